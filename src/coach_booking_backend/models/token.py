'''
JWT payload shapes. Tokens are issued by the external identity service;
this backend only verifies them.
'''
from uuid import UUID
from pydantic import BaseModel
from datetime import datetime

class TokenPayload(BaseModel):
    sub: UUID # 'sub' is the standard JWT claim for subject (the user's id)
    exp: datetime
