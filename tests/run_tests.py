import argparse
import os
import sys

import pytest

# Add src directory to Python path so tests can import modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the denim test suite")
    parser.add_argument(
        "--integration",
        action="store_true",
        help="Include integration tests (long follow-up scenarios)",
    )
    parsed_args, remaining = parser.parse_known_args()

    try:
        import pytest_cov  # noqa: F401
        args = ["-vv", "--cov=denim", "--cov-report=term-missing"]
    except ImportError:
        args = ["-vv"]

    # The last -m wins over the default in pytest.ini
    if parsed_args.integration:
        args += ["-m", "integration or not integration"]
    else:
        args += ["-m", "not integration"]

    args += remaining
    raise SystemExit(pytest.main(args))


if __name__ == "__main__":
    main()
