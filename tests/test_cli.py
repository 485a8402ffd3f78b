"""
Tests for the command-line interface and settings
"""

import json

import pytest

from canvas_backend.cli import main
from canvas_backend.config import Settings

from conftest import make_component, make_document


def run(argv, capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code, json.loads(capsys.readouterr().out)


@pytest.fixture
def model_file(tmp_path, sample_document):
    path = tmp_path / "model-a.json"
    path.write_text(json.dumps(sample_document))
    return path


class TestCli:
    """Tests for validate/summary/list"""

    def test_validate_valid_model(self, model_file, capsys):
        code, out = run(["validate", str(model_file)], capsys)
        assert code == 0
        assert out["summary"]["valid"] is True

    def test_validate_invalid_model(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps(make_document(
            "bad", components=[make_component("a", 0, 0)],
            connections=[{"id": "e", "source": "a", "target": "ghost"}],
        )))
        code, out = run(["validate", str(path)], capsys)
        assert code == 1
        assert out["summary"]["errors"] == 1

    def test_missing_file(self, tmp_path, capsys):
        code, out = run(["summary", str(tmp_path / "nope.json")], capsys)
        assert code == 1
        assert out["success"] is False

    def test_summary(self, model_file, capsys):
        code, out = run(["summary", str(model_file), "--top", "1"], capsys)
        assert code == 0
        assert out["summary"]["total_containers"] == 1
        assert len(out["summary"]["most_connected"]) == 1
        assert "Web App" in out["description"]

    def test_list(self, model_file, tmp_path, capsys):
        code, out = run(["list", "--data-dir", str(tmp_path), "--owner", "local"], capsys)
        assert code == 0
        assert [d["id"] for d in out["documents"]] == ["model-a"]


class TestSettings:
    """Tests for environment configuration"""

    def test_defaults(self, monkeypatch):
        for name in ("THREAT_CANVAS_PORT", "THREAT_CANVAS_STORE_URL", "THREAT_CANVAS_COMMIT_DELAY"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings.from_env()
        assert settings.port == 8765
        assert settings.store_url is None
        assert settings.commit_delay == 0.5

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("THREAT_CANVAS_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("THREAT_CANVAS_PORT", "9000")
        monkeypatch.setenv("THREAT_CANVAS_LOG_LEVEL", "debug")
        monkeypatch.setenv("THREAT_CANVAS_CORS_ORIGINS", "http://a, http://b")
        settings = Settings.from_env()
        assert settings.data_dir == tmp_path
        assert settings.port == 9000
        assert settings.log_level == "DEBUG"
        assert settings.cors_origins == ["http://a", "http://b"]

    def test_bad_number(self, monkeypatch):
        monkeypatch.setenv("THREAT_CANVAS_COMMIT_DELAY", "soon")
        with pytest.raises(ValueError):
            Settings.from_env()
