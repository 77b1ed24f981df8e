"""flakeguard: retry, flake detection, test management and test skipping for test runs."""
