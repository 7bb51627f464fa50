import asyncio

from marticapp.errors import ApiError, PeripheralFailure
from marticapp.events import LastResultChanged, Notify
from marticapp.models import Action, CapturedAudio, Config
from marticapp.pipeline import EDITOR_ROLE, build_processing_prompt

AUDIO = CapturedAudio(data=b"RIFF-audio", mime_type="audio/wav")


def _run(harness, action, selected_text="", config=None):
    async def scenario():
        await harness.login()
        if config is not None:
            harness.store.save_config("ana@example.com", config)
        result = await harness.app.pipeline.run(action, AUDIO, 1.5, selected_text)
        await harness.app.pipeline.drain()
        return result

    return asyncio.run(scenario())


def test_processing_prompt_with_and_without_selection():
    assert build_processing_prompt("resume", "") == 'PREGUNTA/INSTRUCCIÓN: "resume"'
    prompt = build_processing_prompt("resume", "texto largo")
    assert prompt.startswith('TEXTO A PROCESAR:\n"""\ntexto largo\n"""')
    assert prompt.endswith('INSTRUCCIÓN: "resume"')


def test_transcription_is_formatted_and_pasted(harness):
    assert _run(harness, Action.TRANSCRIBE) == "Hola mundo."

    system_prompt, user_text = harness.gateway.prompts[0]
    assert system_prompt == EDITOR_ROLE
    assert 'TEXTO A FORMATEAR:\n"""\nhola mundo\n"""' in user_text
    assert harness.clipboard.text == "Hola mundo."
    assert harness.keyboard.pastes == 1


def test_transcription_without_formatting_skips_the_editor(harness):
    config = Config()
    config.transcription_settings.add_punctuation = False
    config.transcription_settings.correct_grammar = False

    assert _run(harness, Action.TRANSCRIBE, config=config) == "hola mundo"
    assert harness.gateway.count("generate_content") == 0


def test_process_text_combines_instruction_and_selection(harness):
    harness.gateway.transcriptions = ["traduce esto"]
    harness.gateway.generated = ["Hello world"]
    config = Config(active_prompt_name="Traducir a Inglés", final_action="copy")

    assert _run(harness, Action.PROCESS_TEXT, "hola mundo", config) == "Hello world"

    system_prompt, user_text = harness.gateway.prompts[0]
    assert system_prompt.startswith("Eres un traductor experto.")
    assert "hola mundo" in user_text and 'INSTRUCCIÓN: "traduce esto"' in user_text
    assert harness.keyboard.pastes == 0
    assert harness.clipboard.text == "Hello world"
    assert harness.of_type(Notify)[-1].body == "Result copied to the clipboard."


def test_unknown_active_prompt_falls_back_to_first_template(harness):
    config = Config(active_prompt_name="Deleted prompt")
    _run(harness, Action.PROCESS_TEXT, config=config)
    assert harness.gateway.prompts[0][0].startswith("Eres un asistente de transcripción")


def test_successful_run_is_recorded_and_reported(harness):
    _run(harness, Action.TRANSCRIBE)

    history = harness.store.load_history("ana@example.com")
    assert len(history) == 1
    assert history[0].type == "Smart Transcription"
    assert history[0].word_count == 2
    assert harness.store.load_stats("ana@example.com").transcription == 1
    assert harness.gateway.usage == [(2, "A")]
    assert harness.app.pipeline.last_result.get() == "Hola mundo."
    assert harness.of_type(LastResultChanged)[-1].text == "Hola mundo."


def test_api_failure_notifies_and_records_nothing(harness):
    harness.gateway.transcriptions = [ApiError(500, "Internal error")]

    assert _run(harness, Action.TRANSCRIBE) is None

    notice = harness.of_type(Notify)[-1]
    assert notice.title == "MarticApp - An error occurred"
    assert "Internal error" in notice.body
    assert harness.store.load_history("ana@example.com") == []
    assert harness.gateway.usage == []
    assert harness.keyboard.pastes == 0


def test_empty_result_is_an_error(harness):
    harness.gateway.generated = [""]

    assert _run(harness, Action.TRANSCRIBE) is None
    assert "no text" in harness.of_type(Notify)[-1].body
    assert harness.store.load_history("ana@example.com") == []


def test_run_without_session_notifies(harness):
    result = asyncio.run(harness.app.pipeline.run(Action.TRANSCRIBE, AUDIO))
    assert result is None
    assert harness.of_type(Notify)
    assert harness.gateway.calls == []


def test_selected_text_capture_restores_clipboard(harness):
    harness.keyboard.selection = "texto seleccionado"

    selected = asyncio.run(harness.app.pipeline.capture_selected_text())

    assert selected == "texto seleccionado"
    assert harness.keyboard.copies == 1
    assert harness.clipboard.text == "previous clipboard"


def test_selected_text_capture_without_selection(harness):
    assert asyncio.run(harness.app.pipeline.capture_selected_text()) == ""
    assert harness.clipboard.text == "previous clipboard"


def test_attenuation_ramps_down_and_back(harness):
    async def scenario():
        original = await harness.app.pipeline.attenuate()
        await harness.app.pipeline.restore_volume(original)
        return original

    assert asyncio.run(scenario()) == 50
    assert harness.volume.history[:10] == [46, 42, 38, 34, 30, 26, 22, 18, 14, 10]
    assert harness.volume.history[10:] == [14, 18, 22, 26, 30, 34, 38, 42, 46, 50]
    assert len(harness.sleep.delays) == 20


def test_failed_copy_keystroke_restores_clipboard(harness):
    async def failing_copy():
        harness.keyboard.copies += 1
        raise PeripheralFailure("not allowed to send keystrokes")

    harness.keyboard.copy = failing_copy

    selected = asyncio.run(harness.app.pipeline.capture_selected_text())

    assert selected == ""
    assert harness.keyboard.copies == 1
    assert harness.clipboard.text == "previous clipboard"


def test_failed_paste_keystroke_keeps_the_run(harness):
    async def failing_paste():
        raise PeripheralFailure("not allowed to send keystrokes")

    harness.keyboard.paste = failing_paste

    assert _run(harness, Action.TRANSCRIBE) == "Hola mundo."

    assert harness.clipboard.text == "Hola mundo."
    assert harness.app.pipeline.last_result.get() == "Hola mundo."
    assert len(harness.store.load_history("ana@example.com")) == 1
    assert harness.gateway.usage == [(2, "A")]
    notices = [event.title for event in harness.of_type(Notify)]
    assert "MarticApp - An error occurred" not in notices
    assert harness.of_type(Notify)[-1].body == "Result copied to the clipboard."
