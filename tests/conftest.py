"""Pytest configuration and fixtures."""

import os
import tempfile
from typing import Any, Dict, List, Optional

import pytest
import requests

from automation_engine.actions.base import ActionHandler
from automation_engine.actions.gateways import InMemoryCrmGateway
from automation_engine.actions.registry import build_default_dispatcher, build_http_client
from automation_engine.config import get_testing_config
from automation_engine.core.execution_store import InMemoryExecutionStore, SqlExecutionStore
from automation_engine.models.core import ActionResult, ActionResultStatus
from automation_engine.storage.database import create_database_engine, create_session_factory, create_tables


class FakeResponse:
    """Stand-in for ``requests.Response``."""

    def __init__(self, status_code: int = 200, payload: Any = None, text: str = "", reason: str = "OK"):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.reason = reason

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeSession:
    """Replays queued responses and records every request made."""

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *responses):
        self.responses.extend(responses)

    def request(self, method, url, headers=None, json=None, data=None, timeout=None):
        self.calls.append({
            "method": method,
            "url": url,
            "headers": dict(headers or {}),
            "json": json,
            "data": data,
            "timeout": timeout,
        })
        response = self.responses.pop(0) if self.responses else FakeResponse(200, {"ok": True})
        if isinstance(response, Exception):
            raise response
        return response


class RecordingHandler(ActionHandler):
    """Test action that records each invocation and echoes its config."""

    action_type = "RECORD"
    label = "Record"
    description = "Test handler"
    required_config = ["label"]

    def __init__(self, on_execute=None):
        self.calls: List[Dict[str, Any]] = []
        self.on_execute = on_execute

    def execute(self, config, invocation=None):
        self.calls.append(dict(config))
        if self.on_execute is not None:
            self.on_execute(config, invocation)
        return ActionResult(status=ActionResultStatus.SUCCEEDED, output={"label": config.get("label")})


@pytest.fixture
def config():
    """Testing configuration (no backoff delays, small pool)."""
    return get_testing_config()


@pytest.fixture
def gateway():
    return InMemoryCrmGateway()


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def http_client(config, fake_session):
    """HTTP client over the fake session that never sleeps between retries."""
    return build_http_client(config, session=fake_session, sleep=lambda _: None)


@pytest.fixture
def recorder():
    return RecordingHandler()


@pytest.fixture
def dispatcher(config, gateway, http_client, recorder):
    """Dispatcher with every built-in handler plus the RECORD test handler."""
    dispatcher = build_default_dispatcher(config, gateway=gateway, http_client=http_client)
    dispatcher.register_handler(recorder)
    return dispatcher


@pytest.fixture
def memory_store():
    return InMemoryExecutionStore()


@pytest.fixture
def sql_store():
    """SQL store backed by a temporary sqlite file."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(db_fd)

    engine = create_database_engine(f"sqlite:///{db_path}")
    create_tables(engine)
    yield SqlExecutionStore(create_session_factory(engine))

    engine.dispose()
    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Each store implementation in turn."""
    return request.getfixturevalue(f"{request.param}_store")


# Definition builders

def trigger_node(node_id="trigger", trigger_type="RECORD_UPDATED"):
    return {"id": node_id, "type": "trigger", "data": {"triggerType": trigger_type}}


def action_node(node_id, action_type="RECORD", config=None, continue_on_error=False):
    data = {"actionType": action_type, "config": config if config is not None else {"label": node_id}}
    if continue_on_error:
        data["continueOnError"] = True
    return {"id": node_id, "type": "action", "data": data}


def condition_node(node_id, field, operator="equals", value=None, conditions=None):
    data = {"field": field, "operator": operator, "value": value}
    if conditions:
        data["conditions"] = conditions
    return {"id": node_id, "type": "condition", "data": data}


def loop_node(node_id, collection, item_variable="item"):
    return {"id": node_id, "type": "loop", "data": {"collection": collection, "itemVariable": item_variable}}


def edge(source, target, port=None):
    payload = {"id": f"{source}-{target}", "source": source, "target": target}
    if port:
        payload["sourcePort"] = port
    return payload


def make_definition(
    nodes,
    edges,
    definition_id="wf-1",
    name="Test workflow",
    object_id="deals",
    trigger_type="RECORD_UPDATED",
    trigger_field=None,
    is_active=True,
    variables=None,
) -> Dict[str, Any]:
    trigger = {"type": trigger_type}
    if trigger_field:
        trigger["field"] = trigger_field
    return {
        "id": definition_id,
        "name": name,
        "objectId": object_id,
        "trigger": trigger,
        "nodes": nodes,
        "edges": edges,
        "variables": variables or [],
        "isActive": is_active,
    }


def linear_definition(*action_ids, **kwargs) -> Dict[str, Any]:
    """trigger -> action_ids[0] -> action_ids[1] -> ..."""
    nodes = [trigger_node(trigger_type=kwargs.get("trigger_type", "RECORD_UPDATED"))]
    nodes += [action_node(node_id) for node_id in action_ids]
    chain = ["trigger"] + list(action_ids)
    edges = [edge(a, b) for a, b in zip(chain, chain[1:])]
    return make_definition(nodes, edges, **kwargs)


def make_event(
    event_type="RECORD_UPDATED",
    object_type="deals",
    record_id="rec-1",
    before=None,
    after=None,
    changed_fields=None,
    user=None,
) -> Dict[str, Any]:
    event = {
        "eventType": event_type,
        "objectType": object_type,
        "recordId": record_id,
        "before": before if before is not None else {"status": "open", "amount": 100},
        "after": after if after is not None else {"status": "won", "amount": 150},
    }
    if changed_fields is not None:
        event["changedFields"] = changed_fields
    if user is not None:
        event["user"] = user
    return event


def http_error(message="connection refused"):
    return requests.ConnectionError(message)
