from engine_config import EngineConfig, load_config


def test_defaults_when_environment_is_empty():
    config = load_config(env={}, dotenv=False)
    assert config == EngineConfig()
    assert config.navigate_timeout_ms is None
    assert config.intervention_timeout_ms is None


def test_environment_overrides():
    config = load_config(
        env={
            "AUTOFILL_CONFIDENCE_THRESHOLD": "0.85",
            "AUTOFILL_SETTLE_MS": "250",
            "AUTOFILL_RESOLVE_ROUNDS": "3",
            "AUTOFILL_NAVIGATE_TIMEOUT_MS": "30000",
            "AUTOFILL_HEADLESS": "yes",
            "AUTOFILL_CAPTURE_DIR": "out/runs",
        },
        dotenv=False,
    )
    assert config.confidence_threshold == 0.85
    assert config.settle_ms == 250
    assert config.resolve_rounds == 3
    assert config.navigate_timeout_ms == 30000
    assert config.headless is True
    assert config.capture_dir == "out/runs"


def test_bad_values_fall_back_and_are_clamped(capsys):
    config = load_config(
        env={
            "AUTOFILL_CONFIDENCE_THRESHOLD": "1.7",
            "AUTOFILL_WAIT_TIMEOUT_MS": "soon",
            "AUTOFILL_RESOLVE_ROUNDS": "0",
            "AUTOFILL_HEADLESS": "maybe",
        },
        dotenv=False,
    )
    assert config.confidence_threshold == 1.0
    assert config.wait_timeout_ms == 5000
    assert config.resolve_rounds == 1
    assert config.headless is False
    out = capsys.readouterr().out
    assert "AUTOFILL_WAIT_TIMEOUT_MS" in out
    assert "AUTOFILL_HEADLESS" in out


def test_dotenv_file_fills_gaps(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("AUTOFILL_SETTLE_MS=42\nAUTOFILL_NOTICE_MS=10\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    config = load_config(env={"AUTOFILL_NOTICE_MS": "99"})

    assert config.settle_ms == 42
    # the process environment wins over .env
    assert config.notice_ms == 99


def test_replace_returns_new_config():
    base = EngineConfig()
    tuned = base.replace(settle_ms=0)
    assert tuned.settle_ms == 0
    assert base.settle_ms == 500
