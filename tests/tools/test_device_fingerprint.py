import pytest

from geoattend.backend.tools.device_fingerprint import (
    DeviceDataError, bind_hash, detect_platform, extract_device_info, fingerprint,
    sanitize_device_value, validate_device_data, verify,
)

UA = "Mozilla/5.0 (X11; Linux x86_64) GeoAttendTest/1.0"


def test_fingerprint_is_deterministic_sha256_hex():
    first = fingerprint(UA, "Linux", "abc")
    assert first == fingerprint(UA, "Linux", "abc")
    assert len(first) == 64
    int(first, 16)


def test_fingerprint_missing_entropy_equals_empty_entropy():
    assert fingerprint(UA, "Linux") == fingerprint(UA, "Linux", "")


@pytest.mark.parametrize("user_agent, platform, entropy", [
    (UA + "x", "Linux", None),
    (UA, "Windows", None),
    (UA, "Linux", "extra"),
])
def test_fingerprint_changes_with_any_attribute(user_agent, platform, entropy):
    assert fingerprint(user_agent, platform, entropy) != fingerprint(UA, "Linux")


def test_bind_hash_verifies_same_fingerprint_only():
    fp = fingerprint(UA, "Linux")
    stored = bind_hash(fp, rounds=4)
    assert stored.startswith("$2")
    assert verify(fp, stored) is True
    assert verify(fingerprint(UA, "Windows"), stored) is False


def test_bind_hash_is_salted():
    fp = fingerprint(UA, "Linux")
    assert bind_hash(fp, rounds=4) != bind_hash(fp, rounds=4)


def test_verify_with_corrupt_hash_returns_false():
    assert verify(fingerprint(UA, "Linux"), "not-a-bcrypt-hash") is False


# --- validate_device_data ---

def test_validate_device_data_trims_and_normalizes_entropy():
    assert validate_device_data(f"  {UA}  ", "Linux", "   ") == (UA, "Linux", None)
    assert validate_device_data(UA, "iOS", " seed ") == (UA, "iOS", "seed")


def test_validate_device_data_matches_header_sanitizing():
    tabbed = "Mozilla/5.0 (X11; Linux x86_64)\tGeoAttendTest/1.0"
    user_agent, platform, entropy = validate_device_data(tabbed, "Linux", "se\x00ed")

    assert user_agent == sanitize_device_value(tabbed) == "Mozilla/5.0 (X11; Linux x86_64)GeoAttendTest/1.0"
    assert (platform, entropy) == ("Linux", "seed")
    headers = {"user-agent": tabbed, "x-device-platform": "Linux", "x-device-entropy": "seed"}
    assert extract_device_info(headers)["user_agent"] == user_agent


@pytest.mark.parametrize("user_agent, platform", [
    (None, "Linux"),
    (12345678901, "Linux"),
    ("short", "Linux"),
    ("x" * 2001, "Linux"),
    (UA, None),
    (UA, "BeOS"),
    (UA, ["Linux"]),
])
def test_validate_device_data_rejects(user_agent, platform):
    with pytest.raises(DeviceDataError):
        validate_device_data(user_agent, platform)


# --- platform detection / headers ---

@pytest.mark.parametrize("user_agent, expected", [
    ("Mozilla/5.0 (Windows NT 10.0; Win64; x64)", "Windows"),
    ("Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0)", "macOS"),
    ("Mozilla/5.0 (Linux; Android 14; Pixel 8)", "Android"),
    ("Mozilla/5.0 (X11; Linux x86_64)", "Linux"),
    ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X)", "iOS"),
    ("curl/8.4.0", "Unknown"),
    ("", ""),
])
def test_detect_platform(user_agent, expected):
    assert detect_platform(user_agent) == expected


def test_sanitize_device_value_strips_control_characters():
    assert sanitize_device_value("Mozilla\x00/5.0\x1f ") == "Mozilla/5.0"
    assert sanitize_device_value(None) == ""
    assert len(sanitize_device_value("a" * 5000)) == 2000


def test_extract_device_info_sniffs_platform():
    info = extract_device_info({"user-agent": UA})
    assert info == {"user_agent": UA, "platform": "Linux", "entropy": None}


def test_extract_device_info_prefers_declared_headers():
    info = extract_device_info({
        "user-agent": UA,
        "x-device-platform": "Android",
        "x-device-entropy": "seed",
    })
    assert info["platform"] == "Android"
    assert info["entropy"] == "seed"
