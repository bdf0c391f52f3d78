import json
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from agent.edit_agent import COMPOSITION_TOOLS, EditAgent, EditRequest, execute_tool
from agent.edit_agent.prompts import build_system_prompt
from handlers.edit_handler import get_edit_agent
from main import app
from models.composition_models import AssetInfo, AssetStatus, ElementType
from operators.asset_operator import register_asset
from operators.composition_editor import add_element
from operators.composition_operator import (
    CompositionNotFoundError,
    get_composition,
    get_document,
)

from conftest import make_document


def _tool_call(name, arguments, call_id="call_1"):
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return SimpleNamespace(
        id=call_id,
        type="function",
        function=SimpleNamespace(name=name, arguments=arguments),
    )


def _response(content=None, tool_calls=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class _ScriptedClient:
    """Stands in for the OpenAI client; replays responses, repeating the last one."""

    def __init__(self, responses=None, error=None):
        self.responses = list(responses or [])
        self.error = error
        self.requests = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        # the agent keeps appending to the same list, so record a copy
        self.requests.append({**kwargs, "messages": list(kwargs["messages"])})
        if self.error:
            raise self.error
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def _seed_text(db, composition_id, label):
    return add_element(db, composition_id, ElementType.TEXT, label=label).affected_elements[0]


class TestEditAgentLoop:
    def test_tool_call_then_reply(self, db, composition_id):
        client = _ScriptedClient(
            [
                _response(
                    tool_calls=[
                        _tool_call(
                            "add_text_element",
                            {"text": "Hello", "from": 0, "durationInFrames": 60, "label": "Greeting"},
                        )
                    ]
                ),
                _response(content="Added a greeting."),
            ]
        )

        result = EditAgent(client=client).run(db, composition_id, EditRequest(message="Say hello"))

        assert result.message == "Added a greeting."
        assert result.receipts == ['Added text element "Greeting"']
        assert result.iterations == 2
        assert result.budget_exhausted is False
        assert result.new_version == 1
        assert result.tool_calls[0].tool == "add_text_element"

        second_request = client.requests[1]["messages"]
        assert second_request[-1]["role"] == "tool"
        assert json.loads(second_request[-1]["content"])["success"] is True

    def test_prompt_carries_state_and_history(self, db, composition_id):
        _seed_text(db, composition_id, "Title")
        client = _ScriptedClient([_response(content="Nothing to do.")])
        request = EditRequest(
            message="What is on screen?",
            history=[
                {"role": "user", "content": "hi"},
                {"role": "assistant", "content": "hello"},
                {"role": "system", "content": "ignored"},
            ],
        )

        EditAgent(client=client).run(db, composition_id, request)

        messages = client.requests[0]["messages"]
        assert messages[0]["role"] == "system"
        assert '"Title"' in messages[0]["content"]
        assert [m["role"] for m in messages[1:]] == ["user", "assistant", "user"]
        assert client.requests[0]["tools"] == COMPOSITION_TOOLS

    def test_budget_exhausted(self, db, composition_id):
        client = _ScriptedClient(
            [_response(tool_calls=[_tool_call("add_text_element", {"text": "Again", "from": 0, "durationInFrames": 30})])]
        )

        result = EditAgent(client=client, max_iterations=3).run(
            db, composition_id, EditRequest(message="Keep going")
        )

        assert result.budget_exhausted is True
        assert result.iterations == 3
        assert len(client.requests) == 3
        assert len(result.receipts) == 3
        assert result.new_version == 3
        assert result.message == "; ".join(result.receipts)

    def test_disambiguation_ends_turn(self, db, composition_id):
        _seed_text(db, composition_id, "Caption")
        _seed_text(db, composition_id, "caption")
        client = _ScriptedClient(
            [
                _response(
                    tool_calls=[
                        _tool_call(
                            "update_element_properties",
                            {
                                "selector": {"type": "byLabel", "label": "caption"},
                                "properties": {"color": "#ff0000"},
                            },
                        )
                    ]
                ),
                _response(content="should not be requested"),
            ]
        )

        result = EditAgent(client=client).run(
            db, composition_id, EditRequest(message="Make the caption red")
        )

        assert result.needs_disambiguation is True
        assert len(result.disambiguation_options) == 2
        assert result.message.startswith("Several elements match. Which one did you mean?")
        assert "1. Caption" in result.message
        assert len(client.requests) == 1
        assert result.new_version == 2

    def test_invalid_tool_arguments(self, db, composition_id):
        client = _ScriptedClient(
            [
                _response(tool_calls=[_tool_call("delete_element", "{not json")]),
                _response(content="Sorry, that failed."),
            ]
        )

        result = EditAgent(client=client).run(db, composition_id, EditRequest(message="Delete"))

        assert result.tool_calls[0].result["error_code"] == "INVALID_ARGUMENTS"
        assert result.receipts == []
        assert result.message == "Sorry, that failed."

    def test_model_failure(self, db, composition_id):
        client = _ScriptedClient(error=RuntimeError("boom"))

        result = EditAgent(client=client).run(db, composition_id, EditRequest(message="Hi"))

        assert result.message == "No changes were made."
        assert "Model request failed: boom" in result.warnings
        assert result.iterations == 1
        assert result.new_version == 0

    def test_custom_tool_executor(self, db, composition_id):
        calls = []

        def executor(name, arguments, composition_id_, db_):
            calls.append((name, arguments))
            return {"success": True, "receipt": "Did it"}

        client = _ScriptedClient(
            [
                _response(tool_calls=[_tool_call("delete_element", {"elementId": "x"})]),
                _response(content=None),
            ]
        )

        result = EditAgent(client=client, tool_executor=executor).run(
            db, composition_id, EditRequest(message="Go")
        )

        assert calls == [("delete_element", {"elementId": "x"})]
        assert result.message == "Did it"

    def test_missing_composition(self, db, tables):
        with pytest.raises(CompositionNotFoundError):
            EditAgent(client=_ScriptedClient()).run(db, "comp_missing", EditRequest(message="Hi"))


class TestExecuteTool:
    def test_unknown_tool(self, db, composition_id):
        result = execute_tool("explode", {}, composition_id, db)

        assert result["success"] is False
        assert result["error_code"] == "UNKNOWN_TOOL"
        assert "delete_element" in result["context"]["available_tools"]

    def test_missing_target(self, db, composition_id):
        result = execute_tool("delete_element", {}, composition_id, db)

        assert result["error_code"] == "INVALID_ARGUMENTS"
        assert result["recovery_hint"]

    def test_add_text_requires_text(self, db, composition_id):
        result = execute_tool("add_text_element", {"from": 0, "durationInFrames": 30}, composition_id, db)

        assert result["error_code"] == "INVALID_ARGUMENTS"

    def test_add_text_with_style(self, db, composition_id):
        result = execute_tool(
            "add_text_element",
            {"text": "Hi", "from": 15, "durationInFrames": 45, "fontSize": 64, "color": "#ff0000"},
            composition_id,
            db,
        )

        assert result["success"] is True
        assert result["new_version"] == 1
        element = get_document(db, composition_id).elements[0]
        assert element.from_frame == 15
        assert element.properties.font_size == 64
        assert element.properties.color == "#ff0000"

    def test_animation_replaces_same_property(self, db, composition_id):
        element_id = _seed_text(db, composition_id, "Title")
        fade_in = {
            "elementId": element_id,
            "property": "opacity",
            "keyframes": [{"frame": 0, "value": 0}, {"frame": 30, "value": 1}],
        }
        fade_out = {
            "elementId": element_id,
            "property": "opacity",
            "keyframes": [{"frame": 0, "value": 1}, {"frame": 15, "value": 0}],
            "easing": "ease-out",
        }
        grow = {
            "selector": {"type": "byLabel", "label": "title"},
            "property": "scale",
            "keyframes": [{"frame": 0, "value": 1}, {"frame": 10, "value": 2}],
        }

        assert execute_tool("add_animation", fade_in, composition_id, db)["success"] is True
        assert execute_tool("add_animation", fade_out, composition_id, db)["success"] is True
        assert execute_tool("add_animation", grow, composition_id, db)["success"] is True

        animations = get_document(db, composition_id).find_element(element_id).animations
        assert [a.property_name for a in animations] == ["opacity", "scale"]
        assert animations[0].easing == "ease-out"
        assert animations[0].keyframes[-1].frame == 15

    def test_animation_with_bad_keyframes(self, db, composition_id):
        element_id = _seed_text(db, composition_id, "Title")

        result = execute_tool(
            "add_animation",
            {
                "elementId": element_id,
                "property": "opacity",
                "keyframes": [{"frame": 10, "value": 0}, {"frame": 5, "value": 1}],
            },
            composition_id,
            db,
        )

        assert result["error_code"] == "VALIDATION_ERROR"
        assert get_composition(db, composition_id).version == 1

    def test_move(self, db, composition_id):
        element_id = _seed_text(db, composition_id, "Title")

        result = execute_tool(
            "move_element", {"elementId": element_id, "from": 45}, composition_id, db
        )

        assert result["receipt"] == 'Moved "Title"'
        assert get_document(db, composition_id).find_element(element_id).from_frame == 45

    def test_move_needs_timing(self, db, composition_id):
        element_id = _seed_text(db, composition_id, "Title")

        result = execute_tool("move_element", {"elementId": element_id}, composition_id, db)

        assert result["error_code"] == "INVALID_ARGUMENTS"

    def test_delete_every_element_of_type(self, db, composition_id):
        _seed_text(db, composition_id, "A")
        _seed_text(db, composition_id, "B")

        result = execute_tool(
            "delete_element",
            {"selector": {"type": "byType", "elementType": "text"}},
            composition_id,
            db,
        )

        assert result["receipt"] == "Deleted 2 elements"
        assert get_document(db, composition_id).elements == []

    def test_out_of_range_property(self, db, composition_id):
        element_id = _seed_text(db, composition_id, "Title")

        result = execute_tool(
            "update_element_properties",
            {"elementId": element_id, "properties": {"opacity": 3}},
            composition_id,
            db,
        )

        assert result["success"] is False
        assert result["error_code"] == "VALIDATION_ERROR"
        assert result["severity"] == "validation"

    def test_unknown_element(self, db, composition_id):
        result = execute_tool(
            "update_element_properties",
            {"elementId": "ghost", "properties": {"text": "x"}},
            composition_id,
            db,
        )

        assert result["error_code"] == "ELEMENT_NOT_FOUND"

    def test_asset_not_ready(self, db, project, composition_id):
        asset = register_asset(db, project.project_id, asset_type="video", filename="clip.mp4")

        result = execute_tool(
            "add_video_element", {"assetId": asset.asset_id}, composition_id, db
        )

        assert result["error_code"] == "ASSET_NOT_READY"
        assert result["severity"] == "recoverable"

    def test_add_ready_video(self, db, project, composition_id):
        asset = register_asset(
            db,
            project.project_id,
            asset_type="video",
            filename="clip.mp4",
            status=AssetStatus.READY,
            playback_url="https://cdn.example/clip.mp4",
            duration_seconds=3,
        )

        result = execute_tool(
            "add_video_element", {"assetId": asset.asset_id, "from": 30}, composition_id, db
        )

        assert result["success"] is True
        assert result["receipt"] == 'Added video element "clip.mp4"'
        element = get_document(db, composition_id).elements[0]
        assert element.duration_in_frames == 90
        assert element.from_frame == 30


class TestPrompt:
    def test_lists_elements_and_assets(self, mixed_document):
        asset = AssetInfo(
            asset_id="asset_1",
            asset_type="video",
            filename="clip.mp4",
            status=AssetStatus.READY,
            playback_url="https://cdn.example/clip.mp4",
            duration_seconds=4.5,
        )

        prompt = build_system_prompt(mixed_document, [asset])

        assert "1920x1080, 30 fps, 300 frames" in prompt
        assert '- [0] video "Intro" id=el_video from 0 (90 frames)' in prompt
        assert '- [3] text "el_plain_text" id=el_plain_text from 150 (90 frames)' in prompt
        assert "- asset_1: clip.mp4 (video, ready, 4.5s)" in prompt

    def test_empty_composition(self):
        prompt = build_system_prompt(make_document(), [])

        assert prompt.count("- (none)") == 2


def test_tool_catalog():
    names = {tool["function"]["name"] for tool in COMPOSITION_TOOLS}

    assert names == {
        "add_video_element",
        "add_text_element",
        "add_animation",
        "update_element_properties",
        "delete_element",
        "move_element",
    }


def test_chat_endpoint(tables):
    with TestClient(app) as client:
        created = client.post("/projects", json={"name": "Chat"}).json()
        scripted = _ScriptedClient(
            [
                _response(
                    tool_calls=[
                        _tool_call(
                            "add_text_element",
                            {"text": "Hi", "from": 0, "durationInFrames": 30, "label": "Hi"},
                        )
                    ]
                ),
                _response(content="Done."),
            ]
        )
        app.dependency_overrides[get_edit_agent] = lambda: EditAgent(client=scripted)
        try:
            response = client.post(
                f"/compositions/{created['composition_id']}/chat",
                json={"message": "Add a greeting"},
            )
        finally:
            app.dependency_overrides.pop(get_edit_agent, None)

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["reply"] == "Done."
    assert body["receipts"] == ['Added text element "Hi"']
    assert body["version"] == 1
