# pharmorder/utils/retry.py
import requests
from sqlalchemy.exc import IntegrityError
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type


def http_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=3),
        retry=retry_if_exception_type(requests.RequestException),
    )


def conflict_retry():
    # jedna ponowna próba całej transakcji po konflikcie unikalności
    return retry(
        reraise=True,
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=0.2),
        retry=retry_if_exception_type(IntegrityError),
    )
