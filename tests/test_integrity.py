from __future__ import annotations

import allure
import pytest

from bulkflow.errors import ChecksumMismatchError
from bulkflow.pipeline.integrity import compute_content_md5, is_checksum_correct, verify_checksum

pytestmark = [
    allure.epic("Entry Pipeline"),
    allure.feature("Download Integrity"),
]


def test_compute_content_md5_is_base64_digest() -> None:
    assert compute_content_md5(b"") == "1B2M2Y8AsgTpgAmY7PhCfg=="
    assert compute_content_md5(b"hello") == "XUFAKrxLKna5cZ2REBfFkg=="


def test_checksum_comparison_tolerates_surrounding_whitespace() -> None:
    assert is_checksum_correct(b"hello", " XUFAKrxLKna5cZ2REBfFkg==\n")


@pytest.mark.parametrize("declared", [None, "", "XUFAKrxLKna5cZ2REBfFkg=="])
def test_checksum_mismatch_or_missing_is_rejected(declared: str | None) -> None:
    assert not is_checksum_correct(b"hello!", declared)


def test_verify_checksum_reports_both_digests() -> None:
    with pytest.raises(ChecksumMismatchError) as error_info:
        verify_checksum(b"hello!", "XUFAKrxLKna5cZ2REBfFkg==")

    assert error_info.value.expected == "XUFAKrxLKna5cZ2REBfFkg=="
    assert error_info.value.actual == compute_content_md5(b"hello!")
