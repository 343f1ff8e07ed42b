from __future__ import annotations

# Toolchain steps
TEST_TIMEOUT_SECONDS = 60 * 60.0
BUILD_TIMEOUT_SECONDS = 60 * 60.0

# GH / API operations
GH_TIMEOUT_SECONDS = 60.0
GH_UPLOAD_TIMEOUT_SECONDS = 10 * 60.0

# Idempotent GH read retry policy. Writes (upload, dispatch, merge) are never
# retried here; re-running the pipeline is the retry.
GH_READ_RETRY_ATTEMPTS = 3
GH_READ_RETRY_DELAY_SECONDS = 1.0
