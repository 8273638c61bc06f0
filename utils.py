import logging
import re

logger = logging.getLogger(__name__)

COVERAGE_PATTERN = re.compile(r'coverage:\s*(\d+(?:\.\d+)?)%')

PERCENT_PATTERN = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*%?\s*$')


def parse_coverage(output):
    """
    Average every ``coverage: NN.N%`` figure printed by a test run.

    Each match is one package; packages are weighted equally rather than by
    their number of statements. Output without any match yields ``0.00%``.

    Args:
        output (str): Test runner standard output

    Returns:
        str: Mean coverage with two decimals, e.g. "70.00%"
    """
    values = [float(m) for m in COVERAGE_PATTERN.findall(output or '')]
    count = len(values) or 1
    return f"{sum(values) / count:.2f}%"


def parse_percent(text):
    """
    Read a percentage such as "82.35%" back into a number.

    Args:
        text (str): Coverage text

    Returns:
        float or None: The percentage, None if text is not a percentage
    """
    match = PERCENT_PATTERN.match(text or '')
    if not match:
        return None
    return float(match.group(1))


def format_percent(value):
    """Round to two decimals and drop trailing zeros, e.g. 100.0 -> "100%"."""
    return f"{round(value, 2):g}%"


def validate_repo(repo):
    """
    Validate a repository path.

    Args:
        repo (str): Repository path, e.g. github.com/user/repo

    Returns:
        bool: True if valid, False otherwise
    """
    if not repo or not isinstance(repo, str):
        logger.error("Invalid repository: empty")
        return False

    parts = repo.strip('/').split('/')
    if len(parts) < 2 or '.' not in parts[0]:
        logger.error(f"Invalid repository: {repo} (expected host/owner/name)")
        return False

    if any(part in ('', '.', '..') for part in parts):
        logger.error(f"Invalid repository: {repo}")
        return False

    if re.search(r'\s', repo):
        logger.error(f"Invalid repository: {repo} contains whitespace")
        return False

    return True
