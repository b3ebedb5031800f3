import pytest

from nameban_telegram.matcher import SafeMatcher


@pytest.fixture(scope="session")
def safe_matcher():
    # generous bound so slow CI workers don't turn normal matches into timeouts
    with SafeMatcher(timeout=0.5) as sm:
        yield sm
