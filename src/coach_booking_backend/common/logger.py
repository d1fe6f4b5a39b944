'''
universal logger
'''
# In src/coach_booking_backend/common/logger.py
import logging
import sys

def setup_logger():
    """
    Configures and returns the named logger for the application.
    """
    logger = logging.getLogger('CB-backend')
    logger.setLevel(logging.INFO)

    handler = logging.StreamHandler(sys.stdout)

    # module name first so sweeper and request logs are easy to tell apart
    formatter = logging.Formatter(
        '%(asctime)s - %(module)s - %(levelname)s\n - %(message)s'
    )
    handler.setFormatter(formatter)

    if not logger.handlers:
        logger.addHandler(handler)

    return logger

# Create a single logger instance to be imported by other modules
log = setup_logger()
