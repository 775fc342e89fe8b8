from __future__ import annotations

from pathlib import Path

import pytest

from blemaster.core.errors import ProfileLoadError, ProfileValidationError
from blemaster.core.profile_loader import load_profile_file


def _write_profile(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def test_load_battery_profile(tmp_path: Path) -> None:
    path = _write_profile(
        tmp_path / "battery.yaml",
        """
name: Battery Monitor
services:
  180F:
    2A19: [2902]
    2A1A: []
permissions:
  2A19: READ
  2902: 0x03
""",
    )

    spec = load_profile_file(path)
    assert spec.name == "Battery Monitor"
    assert spec.services == {"180f": {"2a19": ("2902",), "2a1a": ()}}
    assert spec.permissions == {"2a19": 0x01, "2902": 0x03}


def test_name_defaults_to_file_stem(tmp_path: Path) -> None:
    path = _write_profile(
        tmp_path / "thermometer.yaml",
        """
services:
  "1809":
    "2a1c": ["2902"]
""",
    )

    assert load_profile_file(path).name == "thermometer"


def test_full_length_uuids_accepted(tmp_path: Path) -> None:
    path = _write_profile(
        tmp_path / "nus.yaml",
        """
services:
  6E400001-B5A3-F393-E0A9-E50E24DCCA9E:
    6E400003-B5A3-F393-E0A9-E50E24DCCA9E: ["2902"]
""",
    )

    spec = load_profile_file(path)
    assert "6e400001-b5a3-f393-e0a9-e50e24dcca9e" in spec.services


def test_duplicate_keys_rejected(tmp_path: Path) -> None:
    path = _write_profile(
        tmp_path / "dup.yaml",
        """
services:
  180F:
    2A19: []
  180F:
    2A1A: []
""",
    )

    with pytest.raises(ProfileValidationError):
        load_profile_file(path)


def test_case_variants_of_same_service_rejected(tmp_path: Path) -> None:
    path = _write_profile(
        tmp_path / "dup.yaml",
        """
services:
  180F:
    2A19: []
  180f:
    2A1A: []
""",
    )

    with pytest.raises(ProfileValidationError, match="declared twice"):
        load_profile_file(path)


@pytest.mark.parametrize(
    "content",
    [
        "name: empty\n",
        "services: {}\n",
        "services:\n  180F: [2A19]\n",
        "services:\n  not-a-uuid:\n    2A19: []\n",
        "services:\n  180F:\n    2A19: []\nextra: true\n",
        "services:\n  180F:\n    2A19: []\npermissions:\n  2A19: SOMETIMES\n",
        "services:\n  180F:\n    2A19: []\npermissions:\n  2A19: '010'\n",
        "- just\n- a list\n",
    ],
)
def test_invalid_profiles_rejected(tmp_path: Path, content: str) -> None:
    path = _write_profile(tmp_path / "bad.yaml", content)

    with pytest.raises(ProfileValidationError):
        load_profile_file(path)


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ProfileLoadError):
        load_profile_file(tmp_path / "nope.yaml")
