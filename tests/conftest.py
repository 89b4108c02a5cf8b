import pytest

import api.event_log as event_log


@pytest.fixture(autouse=True)
def _event_log_path(tmp_path, monkeypatch):
    path = tmp_path / "events.log"
    monkeypatch.setattr(event_log, "EVENT_LOG_PATH", str(path))
    return path
