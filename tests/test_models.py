"""
Tests for the profile, event, extraction and match models.
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from profile_matching.errors import ProtectedFieldError, UnknownFieldError, ValidationError
from profile_matching.models import (
    CallEvent,
    ContactPair,
    DatingPreferences,
    ExtractedProfile,
    Gender,
    MatchRecord,
    Profile,
    ProfileField,
    ProfileUpdate,
    is_empty_value,
    parse_webhook,
    resolve_field_name,
)

from conftest import COMPLETE_FIELDS, make_extracted


class TestEmptiness:
    @pytest.mark.parametrize(
        "value",
        [None, "", "   ", [], DatingPreferences()],
    )
    def test_empty_values(self, value):
        assert is_empty_value(value) is True

    @pytest.mark.parametrize(
        "value",
        ["Ana", 0, 1994, ["honest"], DatingPreferences(min_age=25), Gender.OTHER],
    )
    def test_non_empty_values(self, value):
        assert is_empty_value(value) is False


class TestFieldNames:
    def test_resolves_tracked_field(self):
        assert resolve_field_name("first_name") is ProfileField.FIRST_NAME

    @pytest.mark.parametrize(
        "name", ["contact_id", "created_at", "updated_at", "embedding", "embedded_tags", "match_pending"]
    )
    def test_protected_field_rejected(self, name):
        with pytest.raises(ProtectedFieldError):
            resolve_field_name(name)

    def test_unknown_field_rejected(self):
        with pytest.raises(UnknownFieldError) as exc_info:
            resolve_field_name("favourite_colour")
        assert exc_info.value.context["field"] == "favourite_colour"


class TestProfileUpdate:
    def test_only_given_fields_are_provided(self):
        update = ProfileUpdate.from_fields({"first_name": "Ana", "job_or_education": None})

        assert update.provided == [ProfileField.FIRST_NAME, ProfileField.JOB_OR_EDUCATION]
        assert dict(update.items()) == {
            ProfileField.FIRST_NAME: "Ana",
            ProfileField.JOB_OR_EDUCATION: None,
        }

    def test_from_fields_rejects_protected(self):
        with pytest.raises(ProtectedFieldError):
            ProfileUpdate.from_fields({"contact_id": "+1555"})

    def test_from_fields_rejects_unknown(self):
        with pytest.raises(UnknownFieldError):
            ProfileUpdate.from_fields({"height": 180})

    def test_is_frozen(self):
        update = ProfileUpdate.from_fields({"first_name": "Ana"})
        with pytest.raises(PydanticValidationError):
            update.first_name = "Bea"

    def test_empty_update(self):
        assert ProfileUpdate().is_empty() is True


class TestProfile:
    def test_new_profile_is_empty(self):
        profile = Profile(contact_id="+14155550123")

        assert profile.dealbreakers == []
        assert profile.preference_tags == []
        assert profile.embedding is None
        assert profile.needs_embedding is False

    def test_contact_id_required(self):
        with pytest.raises(PydanticValidationError):
            Profile(contact_id="")

    def test_needs_embedding_when_tags_differ(self):
        profile = Profile(contact_id="a", preference_tags=["honest"])
        assert profile.needs_embedding is True

        embedded = profile.model_copy(update={"embedded_tags": ["honest"], "embedding": [1.0]})
        assert embedded.needs_embedding is False

    def test_field_status(self):
        profile = Profile(
            contact_id="a",
            first_name="Ana",
            gender=Gender.FEMALE,
            dating_preferences=DatingPreferences(min_age=25, max_age=35),
        )

        status = profile.field_status()

        assert set(status) == {f.value for f in ProfileField}
        assert status["first_name"] == {"value": "Ana", "is_completed": True}
        assert status["gender"] == {"value": "female", "is_completed": True}
        assert status["dating_preferences"] == {
            "value": {"min_age": 25, "max_age": 35, "gender": None},
            "is_completed": True,
        }
        assert status["dealbreakers"] == {"value": [], "is_completed": False}


class TestExtractedProfile:
    def test_all_keys_required(self):
        with pytest.raises(PydanticValidationError):
            ExtractedProfile.model_validate({"first_name": "Ana"})

    def test_extra_keys_rejected(self):
        data = {name: None for name in ExtractedProfile.model_fields}
        data["favourite_colour"] = "blue"
        with pytest.raises(PydanticValidationError):
            ExtractedProfile.model_validate(data)

    def test_to_update_cleans_lists(self):
        extracted = make_extracted(
            first_name="Ana",
            preference_tags=[" honest ", "funny", "", "honest"],
            dealbreakers=None,
        )

        update = extracted.to_update()

        assert update.preference_tags == ["honest", "funny"]
        assert update.dealbreakers is None
        assert len(update.provided) == len(ProfileField)

    def test_to_update_converts_dating_preferences(self):
        extracted = make_extracted(**COMPLETE_FIELDS)

        update = extracted.to_update()

        assert update.dating_preferences == DatingPreferences(
            min_age=28, max_age=38, gender=Gender.MALE
        )


class TestParseWebhook:
    def _body(self, **call):
        data = {
            "call_id": "call_1",
            "from_number": "+14155550123",
            "transcript": "User: hi",
            "retell_llm_dynamic_variables": {"first_name": "Ana"},
        }
        data.update(call)
        return {"event": "call_ended", "call": data}

    def test_valid_call_ended(self):
        event = parse_webhook(self._body())

        assert isinstance(event, CallEvent)
        assert event.call_id == "call_1"
        assert event.contact_id == "+14155550123"
        assert event.context_vars == {"first_name": "Ana"}

    def test_missing_optional_parts(self):
        body = self._body()
        del body["call"]["transcript"]
        del body["call"]["retell_llm_dynamic_variables"]

        event = parse_webhook(body)

        assert event.transcript == ""
        assert event.context_vars == {}

    @pytest.mark.parametrize("kind", ["call_started", "call_analyzed", None, "other"])
    def test_unsupported_event_kind(self, kind):
        body = self._body()
        body["event"] = kind
        with pytest.raises(ValidationError, match="Only call_ended"):
            parse_webhook(body)

    def test_missing_call_id(self):
        with pytest.raises(ValidationError, match="Missing call_id"):
            parse_webhook(self._body(call_id=""))

    def test_missing_contact(self):
        body = self._body()
        del body["call"]["from_number"]
        with pytest.raises(ValidationError, match="Invalid call payload"):
            parse_webhook(body)

    def test_non_object_body(self):
        with pytest.raises(ValidationError):
            parse_webhook(["call_ended"])


class TestContactPair:
    def test_symmetric(self):
        assert ContactPair.of("b", "a") == ContactPair.of("a", "b")
        assert hash(ContactPair.of("b", "a")) == hash(ContactPair.of("a", "b"))

    def test_ordered(self):
        pair = ContactPair.of("zed", "amy")
        assert (pair.low, pair.high) == ("amy", "zed")

    def test_self_pair_rejected(self):
        with pytest.raises(ValidationError):
            ContactPair.of("a", "a")

    def test_direct_construction_requires_order(self):
        with pytest.raises(PydanticValidationError):
            ContactPair(low="b", high="a")

    def test_other_and_contains(self):
        pair = ContactPair.of("a", "b")

        assert pair.other("a") == "b"
        assert pair.other("b") == "a"
        assert "a" in pair
        assert "c" not in pair
        with pytest.raises(ValueError):
            pair.other("c")


class TestMatchRecord:
    def test_to_dict(self):
        record = MatchRecord(pair=ContactPair.of("b", "a"), similarity=0.812345, triggered_by="b")

        data = record.to_dict()

        assert data["contact_a"] == "a"
        assert data["contact_b"] == "b"
        assert data["similarity"] == 0.8123
        assert data["triggered_by"] == "b"

    def test_is_frozen(self):
        record = MatchRecord(pair=ContactPair.of("a", "b"), similarity=0.8, triggered_by="a")
        with pytest.raises(PydanticValidationError):
            record.similarity = 0.9
