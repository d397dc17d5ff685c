"""Phone index hashing, sync and the checkPhoneIndex lookup."""

import pytest

from teleconsult.phone_index import (
    InvalidArgument,
    check_phone_index,
    hash_phone,
    normalize_phone,
    sync_phone_index,
)


def test_normalize_phone():
    assert normalize_phone(" +221 (77) 000-00-01 ") == "+221770000001"
    assert normalize_phone("221770000001") == "+221770000001"


def test_hash_is_keyed():
    assert hash_phone("+221770000001") == hash_phone("+221770000001", "test-secret")
    assert hash_phone("+221770000001") != hash_phone("+221770000001", "other")
    assert len(hash_phone("+221770000001")) == 64


class TestSync:
    def test_upsert_on_create(self, store):
        sync_phone_index("users", "u1", None, {"phoneNumber": "+221 77 000 00 01"})
        doc = store.get("phone_index", hash_phone("+221770000001"))
        assert doc["uid"] == "u1"

    def test_phone_change_moves_entry(self, store):
        sync_phone_index("patients", "p1", None, {"phone": "+221770000001"})
        sync_phone_index("patients", "p1", {"phone": "+221770000001"}, {"phone": "+221770000002"})
        assert store.get("phone_index", hash_phone("+221770000001")) is None
        assert store.get("phone_index", hash_phone("+221770000002"))["uid"] == "p1"

    def test_delete_removes_entry(self, store):
        sync_phone_index("users", "u1", None, {"phoneNumber": "+221770000001"})
        sync_phone_index("users", "u1", {"phoneNumber": "+221770000001"}, None)
        assert store.find("phone_index") == []

    def test_wired_store_keeps_index_in_sync(self, wired_store):
        wired_store.set("users", "u7", {"phoneNumber": "+221770000007"})
        assert wired_store.get("phone_index", hash_phone("+221770000007"))["uid"] == "u7"


class TestCheckPhoneIndex:
    @pytest.mark.parametrize("phone", ["", None, "221770000001", "+2217"])
    def test_invalid_numbers(self, phone):
        with pytest.raises(InvalidArgument):
            check_phone_index(phone)

    def test_patient_user_exists(self, store):
        store.set("users", "u1", {"type": "patient", "phoneNumber": "+221770000001"})
        assert check_phone_index("+221770000001") == {"exists": True}

    def test_professional_user_is_not_a_match(self, store):
        store.set("users", "u1", {"type": "professional", "phoneNumber": "+221770000001"})
        assert check_phone_index("+221770000001") == {"exists": False}

    def test_patients_collection(self, store):
        store.set("patients", "p1", {"phone": "+221770000001"})
        assert check_phone_index(" +221770000001 ") == {"exists": True}

    def test_unknown(self):
        assert check_phone_index("+221770000009") == {"exists": False}
