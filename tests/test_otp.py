from unittest import mock

import pytest

from examcoach import otp as otp_module
from examcoach.otp import MAX_ATTEMPTS, ConsoleOtpVerifier, DisabledOtpVerifier, OtpSendError, build_otp_verifier


def test_code_is_single_use(otp):
    otp.send_code("+2348123456789")
    code = otp.last_code
    assert otp.verify("+2348123456789", code)
    assert not otp.verify("+2348123456789", code)


def test_code_is_bound_to_phone(otp):
    otp.send_code("+2348123456789")
    assert not otp.verify("+2348000000000", otp.last_code)


def test_attempts_are_capped(otp):
    otp.send_code("+2348123456789")
    code = otp.last_code
    wrong = "000000" if code != "000000" else "111111"
    for _ in range(MAX_ATTEMPTS):
        assert not otp.verify("+2348123456789", wrong)
    assert not otp.verify("+2348123456789", code)


def test_resend_replaces_previous_code(otp):
    otp.send_code("+2348123456789")
    first = otp.last_code
    otp.send_code("+2348123456789")
    if first != otp.last_code:
        assert not otp.verify("+2348123456789", first)
    assert otp.verify("+2348123456789", otp.last_code)


def test_disabled_verifier():
    verifier = build_otp_verifier("disabled")
    assert isinstance(verifier, DisabledOtpVerifier)
    with pytest.raises(OtpSendError):
        verifier.send_code("+2348123456789")
    assert not verifier.verify("+2348123456789", "123456")


def test_codes_stay_out_of_logs_unless_local(clock):
    quiet = build_otp_verifier("console", env_mode="PRODUCTION")
    assert isinstance(quiet, ConsoleOtpVerifier)
    with mock.patch.object(otp_module, "logger") as log:
        quiet.send_code("+2348123456789")
    assert "code" not in log.info.call_args.kwargs

    chatty = ConsoleOtpVerifier(clock=clock, log_codes=True)
    with mock.patch.object(otp_module, "logger") as log:
        chatty.send_code("+2348123456789")
    assert log.info.call_args.kwargs["code"] == chatty.last_code

    assert build_otp_verifier("console", env_mode="local").log_codes
