"""Tag keys and values attached to test runs, suites and sessions."""

from __future__ import annotations

# Retries
IS_RETRY = "test.is_retry"
RETRY_REASON = "test.retry_reason"
HAS_FAILED_ALL_RETRIES = "test.has_failed_all_retries"
FAILURE_SUPPRESSION_REASON = "test.failure_suppression_reason"
FINAL_STATUS = "test.final_status"

# Known tests / early flake detection
IS_NEW = "test.is_new"
EFD_ABORT_REASON = "test.early_flake.abort_reason"
EFD_ENABLED = "test.early_flake.enabled"

# Test management
TM_IS_QUARANTINED = "test.test_management.is_quarantined"
TM_IS_DISABLED = "test.test_management.is_test_disabled"
TM_IS_ATTEMPT_TO_FIX = "test.test_management.is_attempt_to_fix"
TM_ATTEMPT_TO_FIX_PASSED = "test.test_management.attempt_to_fix_passed"

# Test impact analysis
SKIP_REASON = "test.skip_reason"
ITR_UNSKIPPABLE = "test.itr.unskippable"
ITR_FORCED_RUN = "test.itr.forced_run"
ITR_SKIPPED = "test.skipped_by_itr"
ITR_CORRELATION_ID = "itr_correlation_id"
ITR_TESTS_SKIPPED = "test.itr.tests_skipping.count"

# Values
TRUE = "true"
FALSE = "false"
ABORT_REASON_SLOW = "slow"
ABORT_REASON_FAULTY = "faulty"

RETRY_REASON_ATR = "automatic-retry"
RETRY_REASON_EFD = "early-flake-detection"
RETRY_REASON_ATTEMPT_TO_FIX = "attempt-to-fix"

SUPPRESSION_ATR = "atr"
SUPPRESSION_EFD = "efd"
SUPPRESSION_QUARANTINE = "quarantine"
SUPPRESSION_DISABLED = "disabled"
SUPPRESSION_ATTEMPT_TO_FIX = "attempt_to_fix"
