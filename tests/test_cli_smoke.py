import subprocess
import sys


def test_cli_help() -> None:
    cp = subprocess.run(
        [sys.executable, "-m", "msiscan", "--help"],
        check=True,
        capture_output=True,
        text=True,
    )
    assert "msiscan" in cp.stdout.lower()
    for cmd in ("repeat-finder", "detect", "repeat-counter"):
        assert cmd in cp.stdout
