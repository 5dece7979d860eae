"""Tests for agent domain entities."""

from lisa.agents.domain.entities import (
    UNSET,
    Assistant,
    AssistantKind,
    AssistantUpdate,
    DocumentUpload,
    InstructionContext,
    render_instructions,
)


class TestRenderInstructions:
    def test_replaces_every_placeholder(self):
        template = "User {USER_ID}. Remember user {USER_ID}."

        rendered = render_instructions(template, InstructionContext(owner_id=42))

        assert rendered == "User 42. Remember user 42."

    def test_shared_assistant_keeps_template(self):
        template = "User {USER_ID}."

        assert render_instructions(template, InstructionContext()) == template

    def test_template_without_placeholder(self):
        assert render_instructions("Be brief.", InstructionContext(owner_id=3)) == "Be brief."

    def test_context_from_assistant(self):
        assistant = Assistant(id="asst_1", name="Lisa", instructions="", model="gpt-4", owner_id=9)

        assert InstructionContext.for_assistant(assistant).owner_id == 9


class TestAssistantUpdate:
    def test_unset_fields_are_not_present(self):
        update = AssistantUpdate(instructions="Be brief.")

        assert update.present_fields() == {"instructions": "Be brief."}
        assert not update.is_empty

    def test_none_is_a_real_value(self):
        update = AssistantUpdate(store_id=None)

        assert update.present_fields() == {"store_id": None}

    def test_empty_update(self):
        assert AssistantUpdate().is_empty

    def test_from_mapping_accepts_aliases(self):
        update = AssistantUpdate.from_mapping(
            {"vector_store_id": "vs_1", "name": "Lisa", "unknown": "ignored"}
        )

        assert update.store_id == "vs_1"
        assert update.name == "Lisa"
        assert update.instructions is UNSET

    def test_unset_is_falsy_singleton(self):
        assert not UNSET
        assert repr(UNSET) == "UNSET"
        assert type(UNSET)() is UNSET


def test_assistant_kind():
    shared = Assistant(id="a", name="Lisa", instructions="", model="gpt-4")
    owned = Assistant(id="b", name="Lisa", instructions="", model="gpt-4", owner_id=1)

    assert shared.kind == AssistantKind.SHARED
    assert shared.is_shared
    assert owned.kind == AssistantKind.OWNED


def test_document_upload_defaults_filename(tmp_path):
    document = DocumentUpload(path=str(tmp_path / "manual.pdf"))

    assert document.filename == "manual.pdf"
    assert document.staged
