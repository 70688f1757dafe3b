# tests/modules/whatsapp/test_auth_state.py
import pytest

from disparador.modules.whatsapp.auth_state import (
    CREDS_KEY, BufferJSON, SignalKeyStore, clear_auth_state, fix_file_name, use_auth_state,
)
from disparador.modules.whatsapp.repository import WhatsappAuthStateRepository

def test_buffer_json_keeps_bytes():
    """bytes viram {"type": "Buffer", "data": [...]} e voltam como bytes."""
    raw = BufferJSON.dumps({"key": b"\x01\x02", "nested": [b"\xff"], "n": 3})
    assert '"type": "Buffer"' in raw
    assert BufferJSON.loads(raw) == {"key": b"\x01\x02", "nested": [b"\xff"], "n": 3}

def test_fix_file_name():
    assert fix_file_name("app-state-sync-key/abc:1") == "app-state-sync-key__abc-1"
    assert fix_file_name(None) is None

@pytest.mark.asyncio
async def test_new_session_gets_fresh_creds(db):
    state, save_creds = await use_auth_state(db, "session-1")
    assert state.creds["registered"] is False
    assert len(state.creds["noiseKey"]["public"]) == 32

    state.creds["registered"] = True
    await save_creds()
    reloaded, _ = await use_auth_state(db, "session-1")
    assert reloaded.creds["registered"] is True
    assert reloaded.creds["noiseKey"] == state.creds["noiseKey"]

@pytest.mark.asyncio
async def test_signal_keys_set_and_remove(db):
    keys = SignalKeyStore(WhatsappAuthStateRepository(db), "session-2")
    await keys.set({"pre-key": {"1": {"public": b"\x01"}, "2": {"public": b"\x02"}}})
    assert await keys.get("pre-key", ["1", "3"]) == {"1": {"public": b"\x01"}, "3": None}

    await keys.set({"pre-key": {"1": None}})
    assert (await keys.get("pre-key", ["1", "2"]))["1"] is None

@pytest.mark.asyncio
async def test_clear_auth_state_only_touches_one_session(db):
    await SignalKeyStore(WhatsappAuthStateRepository(db), "a").write({"x": 1}, CREDS_KEY)
    await SignalKeyStore(WhatsappAuthStateRepository(db), "b").write({"x": 2}, CREDS_KEY)

    assert await clear_auth_state(db, "a") == 1
    assert await WhatsappAuthStateRepository(db).read("a", CREDS_KEY) is None
    assert await WhatsappAuthStateRepository(db).read("b", CREDS_KEY) is not None

@pytest.mark.asyncio
async def test_signal_keys_keep_empty_values(db):
    keys = SignalKeyStore(WhatsappAuthStateRepository(db), "session-3")
    await keys.set({
        "app-state-sync-version": {"regular": {}},
        "session": {"x": b""},
        "tctoken": {"t": []},
    })

    assert await keys.get("app-state-sync-version", ["regular"]) == {"regular": {}}
    assert await keys.get("session", ["x"]) == {"x": b""}
    assert await keys.get("tctoken", ["t"]) == {"t": []}
