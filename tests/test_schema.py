"""Tests for typed table declarations."""

from datetime import datetime, timedelta, timezone

import pytest

from localbase.errors import ValidationError
from localbase.schema import (
    STORAGE_FILES,
    USERS,
    Column,
    TableSchema,
    decode_generic,
    validate_identifier,
)


class TestIdentifiers:
    """Tests for identifier validation."""

    @pytest.mark.parametrize("name", ["users", "_private", "col_1", "CamelCase"])
    def test_valid_identifiers(self, name):
        assert validate_identifier(name) == name

    @pytest.mark.parametrize("name", ["", "1col", "users; DROP TABLE x", 'a"b', "a-b", None, 5])
    def test_invalid_identifiers(self, name):
        with pytest.raises(ValidationError):
            validate_identifier(name, "column")

    def test_column_name_validated(self):
        with pytest.raises(ValidationError):
            Column("bad name")


class TestDDL:
    """Tests for CREATE TABLE generation."""

    def test_users_ddl(self):
        ddl = USERS.ddl()
        assert ddl.startswith('CREATE TABLE IF NOT EXISTS "users"')
        assert '"id" VARCHAR PRIMARY KEY' in ddl
        assert '"email" VARCHAR NOT NULL UNIQUE' in ddl
        assert "DEFAULT 'active'" in ddl

    def test_unique_together(self):
        assert 'UNIQUE ("bucket_name", "file_path")' in STORAGE_FILES.ddl()

    def test_foreign_keys_not_emitted(self):
        assert "REFERENCES" not in STORAGE_FILES.ddl().upper()
        assert [c.name for c in STORAGE_FILES.foreign_keys()] == ["bucket_name", "owner_id"]

    def test_primary_key_must_exist(self):
        with pytest.raises(ValueError):
            TableSchema(name="t", columns=(Column("a"),), primary_key="id")


class TestEncoding:
    """Tests for value validation and conversion at the store boundary."""

    def test_unknown_column_rejected(self):
        with pytest.raises(ValidationError) as exc:
            USERS.encode_row({"id": "u1", "nickname": "x"})
        assert exc.value.details["columns"] == ["nickname"]

    def test_list_rejected_for_scalar_column(self):
        with pytest.raises(ValidationError):
            USERS.encode_row({"email": ["a@x.com"]})

    def test_arbitrary_object_rejected(self):
        with pytest.raises(ValidationError):
            USERS.encode_row({"email": object()})

    def test_json_column_serialised(self):
        col = Column("payload", "JSON")
        assert col.encode({"a": [1, 2]}) == '{"a": [1, 2]}'
        assert col.decode('{"a": [1, 2]}') == {"a": [1, 2]}

    def test_timestamp_string_normalised_to_naive_utc(self):
        col = Column("at", "TIMESTAMP")
        assert col.encode("2024-05-01T12:00:00Z") == datetime(2024, 5, 1, 12, 0, 0)
        assert col.encode("2024-05-01T14:00:00+02:00") == datetime(2024, 5, 1, 12, 0, 0)

    def test_aware_datetime_normalised(self):
        col = Column("at", "TIMESTAMP")
        value = datetime(2024, 5, 1, 7, 0, tzinfo=timezone(timedelta(hours=-5)))
        assert col.encode(value) == datetime(2024, 5, 1, 12, 0)

    def test_bad_timestamp_rejected(self):
        with pytest.raises(ValidationError):
            Column("at", "TIMESTAMP").encode("yesterday")

    def test_auto_now_filled_on_insert_only(self):
        inserted = USERS.encode_row({"id": "u1", "email": "a@x.com"}, for_insert=True)
        assert isinstance(inserted["created_at"], datetime)
        updated = USERS.encode_row({"email": "b@x.com"})
        assert "created_at" not in updated

    def test_decode_generic_timestamps_are_utc_iso(self):
        assert decode_generic(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05+00:00"
