"""Toga desktop window for the on-device voice chat.

Highlights:
- streamed replies from Apple Foundation Models
- persisted multi-session history with search
- push-to-talk speech input and spoken replies
- familiar slash commands: /help, /new, /clear, /name, /fact
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import shlex
from collections.abc import Callable
from typing import Any
from uuid import UUID

import toga
from toga.style import Pack
from toga.style.pack import COLUMN, ROW

from .config import ChatConfig
from .controller import ConversationController, ModelState
from .exceptions import AuthorizationDeniedError
from .formatting import message_lines, render_transcript, session_label
from .inference import create_foundation_model_responder
from .models import ChatMessage
from .session_store import SessionStore
from .storage import JsonFileKeyValueStore
from .voice.capture import CaptureState, SpeechCapture
from .voice.playback import PITCH_RANGE, RATE_RANGE, VOLUME_RANGE, SpeechPlayback

FONT_SIZE_TITLE = 16
FONT_SIZE_SECTION = 12
FONT_SIZE_BODY = 11
FONT_SIZE_META = 10

COLOR_APP_BG = "#0E1218"
COLOR_SIDEBAR_BG = "#133A4C"
COLOR_PANEL_BG = "#151C26"
COLOR_ACCENT = "#5E9BFF"
COLOR_ACCENT_SOFT = "#1A2A42"
COLOR_DANGER_SOFT = "#432932"
COLOR_TEXT_PRIMARY = "#F6FAFF"
COLOR_TEXT_SECONDARY = "#D4DEEA"
COLOR_TEXT_MUTED = "#9AA8BC"
COLOR_TAB_IDLE = "#1A2736"
COLOR_TAB_ACTIVE = "#29445F"

SIDEBAR_WIDTH = 280

HELP_TEXT = """Slash Commands
/help                Show command help
/new                 Start a new chat
/clear               Clear messages in this chat
/name <your name>    Remember your name
/fact <text>         Remember a fact about you
"""


class FMVoiceChatApp(toga.App):
    """Desktop chat against the on-device language model, with speech in and out."""

    def __init__(self, *args: Any, chat_config: ChatConfig | None = None, **kwargs: Any):
        self.chat_config = chat_config or ChatConfig.load()
        super().__init__(*args, **kwargs)

    def startup(self) -> None:
        """Build services and UI, restore the last chat, then initialize the model."""
        cfg = self.chat_config
        self.store = SessionStore(JsonFileKeyValueStore(cfg.data_dir))
        self.controller = ConversationController(
            self.store,
            responder_factory=functools.partial(
                create_foundation_model_responder, streaming=cfg.streaming
            ),
        )
        self.playback = SpeechPlayback(
            enabled=cfg.tts_enabled,
            rate=cfg.speech_rate,
            pitch=cfg.speech_pitch,
            volume=cfg.speech_volume,
            voice=cfg.voice,
        )
        self.capture = SpeechCapture(
            backend=cfg.speech_backend, phrase_time_limit=cfg.phrase_time_limit
        )

        self.session_button_map: dict[int, UUID] = {}
        self.settings_window: toga.Window | None = None
        self._mic_active = False
        self._streaming_text = ""
        self._init_task: asyncio.Task | None = None

        self.controller.assistant_message.connect(self._on_assistant_message)
        self.controller.messages_changed.connect(self._on_messages_changed)
        self.controller.response_progress.connect(self._on_response_progress)
        self.controller.model_state_changed.connect(self._on_model_state_changed)
        for signal in (self.playback.started, self.playback.finished, self.playback.cancelled):
            signal.connect(lambda _name: self._call_on_ui(self._refresh_speech_controls))
        self.capture.transcript_changed.connect(
            lambda text, final: self._call_on_ui(self._on_transcript_changed, text, final)
        )
        self.capture.state_changed.connect(
            lambda state: self._call_on_ui(self._on_capture_state_changed, state)
        )

        self._build_ui()
        self.controller.bootstrap()
        self._refresh_session_list()
        self._render_transcript()
        self._set_status_text("Starting the on-device language model...")

        self.main_window.show()
        self._init_task = asyncio.create_task(self._initialize_services())

    def _call_on_ui(self, func: Callable[..., Any], *args: Any) -> None:
        """Run ``func`` on the UI event loop; voice callbacks arrive on worker threads."""
        self.loop.call_soon_threadsafe(func, *args)

    async def _initialize_services(self) -> None:
        state = await self.controller.initialize_model()
        authorized = await asyncio.to_thread(self.capture.request_authorization)
        self.mic_button.enabled = authorized
        if not authorized:
            self.mic_button.text = "Mic unavailable"
        if state is ModelState.READY:
            self._set_status_text("Model ready. /help for commands.")
        self._refresh_send_enabled()

    # -- layout --------------------------------------------------------------

    def _section_label(self, text: str) -> toga.Label:
        return toga.Label(
            text,
            style=Pack(
                color=COLOR_TEXT_SECONDARY,
                font_size=FONT_SIZE_SECTION,
                font_weight="bold",
                margin=(12, 14, 6, 14),
            ),
        )

    def _button(self, text: str, handler: Any, *, accent: bool = False, danger: bool = False) -> toga.Button:
        background = COLOR_ACCENT if accent else COLOR_DANGER_SOFT if danger else COLOR_PANEL_BG
        return toga.Button(
            text,
            on_press=handler,
            style=Pack(
                flex=1,
                margin=(6, 4, 6, 4),
                background_color=background,
                color="#FFFFFF" if accent else COLOR_TEXT_PRIMARY,
                font_weight="bold" if accent else "normal",
                font_size=FONT_SIZE_BODY,
            ),
        )

    def _build_ui(self) -> None:
        """Construct application widgets and layout."""
        self.new_chat_button = self._button("New Chat", self.on_new_chat, accent=True)
        self.delete_chat_button = self._button("Delete", self.on_delete_chat, danger=True)
        chat_button_row = toga.Box(style=Pack(direction=ROW, margin=(8, 6, 8, 6)))
        chat_button_row.add(self.new_chat_button)
        chat_button_row.add(self.delete_chat_button)

        self.search_input = toga.TextInput(
            placeholder="Search chats",
            on_change=self.on_search_change,
            style=Pack(margin=(0, 10, 8, 10)),
        )
        self.session_box = toga.Box(style=Pack(direction=COLUMN, margin_top=6))
        session_scroll = toga.ScrollContainer(
            horizontal=False,
            content=self.session_box,
            style=Pack(flex=1, margin=(0, 10, 12, 10), background_color=COLOR_PANEL_BG),
        )

        sidebar = toga.Box(
            style=Pack(
                direction=COLUMN,
                width=SIDEBAR_WIDTH,
                margin=(12, 10, 12, 12),
                background_color=COLOR_SIDEBAR_BG,
            )
        )
        sidebar.add(
            toga.Label(
                "Voice Chat",
                style=Pack(
                    margin=(12, 12, 0, 12),
                    font_size=FONT_SIZE_TITLE,
                    font_weight="bold",
                    color=COLOR_TEXT_PRIMARY,
                ),
            )
        )
        sidebar.add(
            toga.Label(
                "Private, on-device assistant",
                style=Pack(margin=(4, 12, 10, 12), font_size=FONT_SIZE_META, color=COLOR_TEXT_MUTED),
            )
        )
        sidebar.add(chat_button_row)
        sidebar.add(self.search_input)
        sidebar.add(session_scroll)

        self.status_label = toga.Label(
            "",
            style=Pack(
                flex=1,
                color=COLOR_TEXT_SECONDARY,
                font_size=FONT_SIZE_BODY,
                margin=(6, 8, 6, 8),
                background_color=COLOR_ACCENT_SOFT,
            ),
        )
        self.activity = toga.ActivityIndicator(running=False, style=Pack(width=14, height=14, margin=(0, 10)))
        status_panel = toga.Box(style=Pack(direction=ROW, align_items="center", margin=(12, 14, 8, 14)))
        status_panel.add(self.status_label)
        status_panel.add(self.activity)

        self.transcript_view = toga.MultilineTextInput(
            readonly=True,
            style=Pack(flex=1, margin=(0, 14, 14, 14), font_size=FONT_SIZE_BODY),
        )
        self.prompt_input = toga.MultilineTextInput(
            placeholder="Type your message... (/help for commands)",
            on_change=self.on_prompt_change,
            style=Pack(height=96, margin=(0, 14, 10, 14), font_size=FONT_SIZE_BODY),
        )

        self.mic_button = self._button("Mic", self.on_mic)
        self.mic_button.enabled = False
        self.speech_toggle_button = self._button("", self.on_toggle_speech)
        self.stop_speaking_button = self._button("Stop Speaking", self.on_stop_speaking)
        self.clear_button = self._button("Clear", self.on_clear_chat)
        self.settings_button = self._button("Settings", self.on_open_settings)
        self.send_button = self._button("Send", self.on_send, accent=True)

        action_row = toga.Box(style=Pack(direction=ROW, margin=(4, 12, 12, 12)))
        for button in (
            self.mic_button,
            self.speech_toggle_button,
            self.stop_speaking_button,
            self.clear_button,
            self.settings_button,
            self.send_button,
        ):
            action_row.add(button)

        right_pane = toga.Box(style=Pack(direction=COLUMN, flex=1, background_color=COLOR_APP_BG))
        right_pane.add(status_panel)
        right_pane.add(self._section_label("Transcript"))
        right_pane.add(self.transcript_view)
        right_pane.add(self._section_label("Compose"))
        right_pane.add(self.prompt_input)
        right_pane.add(action_row)

        root_box = toga.Box(style=Pack(direction=ROW, flex=1, background_color=COLOR_APP_BG))
        root_box.add(sidebar)
        root_box.add(right_pane)

        self.main_window = toga.MainWindow(title=self.formal_name, size=(980, 640))
        self.main_window.content = root_box
        self._refresh_speech_controls()
        self._refresh_send_enabled()

    # -- rendering -----------------------------------------------------------

    def _set_status_text(self, text: str) -> None:
        self.status_label.text = text

    def _render_transcript(self) -> None:
        messages = self.controller.messages
        if not messages:
            text = "No messages yet in this chat." if self.controller.session_id else "No chat selected."
            self.transcript_view.value = text
            return
        self.transcript_view.value = render_transcript(messages)

    def _refresh_session_list(self) -> None:
        """Rebuild the sidebar from the current search query."""
        sessions = self.controller.search_sessions(self.search_input.value or "")
        self.session_button_map = {}
        while self.session_box.children:
            self.session_box.remove(self.session_box.children[0])
        if not sessions:
            self.session_box.add(
                toga.Label(
                    "No chats found",
                    style=Pack(color=COLOR_TEXT_MUTED, margin=(12, 12, 10, 12), font_size=FONT_SIZE_BODY),
                )
            )
            return
        for session in sessions:
            is_active = session.id == self.controller.session_id
            button = toga.Button(
                session_label(session),
                on_press=self.on_session_pressed,
                style=Pack(
                    margin=(6, 8, 4, 8),
                    text_align="left",
                    background_color=COLOR_TAB_ACTIVE if is_active else COLOR_TAB_IDLE,
                    color=COLOR_TEXT_PRIMARY,
                    font_weight="bold" if is_active else "normal",
                    font_size=FONT_SIZE_BODY,
                ),
            )
            button.enabled = not self.controller.is_responding
            self.session_button_map[id(button)] = session.id
            self.session_box.add(button)

    def _refresh_send_enabled(self) -> None:
        has_text = bool((self.prompt_input.value or "").strip())
        self.send_button.enabled = has_text and not self.controller.is_responding

    def _refresh_speech_controls(self) -> None:
        self.speech_toggle_button.text = "Speech On" if self.playback.enabled else "Speech Off"
        self.stop_speaking_button.enabled = self.playback.is_speaking

    def _set_busy(self, busy: bool) -> None:
        for widget in (self.new_chat_button, self.delete_chat_button, self.clear_button):
            widget.enabled = not busy
        self.prompt_input.readonly = busy
        with contextlib.suppress(Exception):
            if busy:
                self.activity.start()
            else:
                self.activity.stop()
        self._refresh_session_list()
        self._refresh_send_enabled()

    # -- controller callbacks ------------------------------------------------

    def _on_messages_changed(self, messages: list[ChatMessage]) -> None:
        del messages
        self._streaming_text = ""
        self._render_transcript()
        self._refresh_session_list()

    def _on_response_progress(self, text: str) -> None:
        self._streaming_text = text
        prefix = render_transcript(self.controller.messages)
        preview = "\n".join(message_lines(ChatMessage.assistant(text))).strip()
        self.transcript_view.value = f"{prefix}\n\n{preview}".strip()

    def _on_assistant_message(self, message: ChatMessage) -> None:
        self.playback.speak(message.text)

    def _on_model_state_changed(self, state: ModelState) -> None:
        if state is ModelState.UNAVAILABLE:
            self._set_status_text(
                "Model unavailable. "
                f"Reason: {self.controller.model_unavailable_reason}. "
                "You can still browse saved chats."
            )

    # -- voice callbacks -----------------------------------------------------

    def _on_transcript_changed(self, text: str, final: bool) -> None:
        if self._mic_active and not final:
            self._set_status_text(f"Listening: {text}")

    def _on_capture_state_changed(self, state: CaptureState) -> None:
        if state is CaptureState.IDLE:
            self._commit_transcript()

    def _commit_transcript(self) -> None:
        """Move the final transcript into the compose box, once per recording."""
        if not self._mic_active:
            return
        self._mic_active = False
        text = self.capture.finish_recording()
        self.controller.pending_input = self.prompt_input.value or ""
        self.controller.append_to_input(text)
        self.prompt_input.value = self.controller.pending_input
        self.mic_button.text = "Mic"
        self._set_status_text("Recording stopped.")
        self._refresh_send_enabled()

    # -- handlers ------------------------------------------------------------

    def on_prompt_change(self, widget: toga.Widget) -> None:
        del widget
        self._refresh_send_enabled()

    async def on_search_change(self, widget: toga.Widget) -> None:
        del widget
        self._refresh_session_list()

    async def on_session_pressed(self, widget: toga.Widget) -> None:
        session_id = self.session_button_map.get(id(widget))
        if session_id is None or self.controller.is_responding:
            return
        self.controller.switch_to_session(session_id)
        session = self.controller.current_session
        self._set_status_text(f"Resumed chat: {session.title}" if session else "Chat not found.")

    async def on_new_chat(self, widget: toga.Widget | None) -> None:
        del widget
        self.controller.create_new_chat_session()
        self.prompt_input.value = ""
        self._set_status_text("New chat ready. Title comes from your first message.")

    async def on_delete_chat(self, widget: toga.Widget | None) -> None:
        del widget
        session = self.controller.current_session
        if session is None:
            self._set_status_text("No chat selected to delete.")
            return
        confirmed = await self.main_window.dialog(
            toga.ConfirmDialog("Delete Chat", f"Delete '{session.title}' permanently?")
        )
        if not confirmed:
            return
        self.controller.delete_session(session.id)
        self._refresh_session_list()
        self._render_transcript()
        self._set_status_text("Chat deleted.")

    async def on_clear_chat(self, widget: toga.Widget | None) -> None:
        del widget
        self.controller.clear_chat()
        self.prompt_input.value = ""
        self._set_status_text("Chat cleared.")

    async def on_mic(self, widget: toga.Widget) -> None:
        del widget
        if self._mic_active:
            self._commit_transcript()
            return
        try:
            self.capture.start_recording()
        except (AuthorizationDeniedError, OSError) as exc:
            self.mic_button.enabled = False
            self.mic_button.text = "Mic unavailable"
            self._set_status_text(f"Microphone unavailable: {exc}")
            return
        self._mic_active = True
        self.mic_button.text = "Stop Mic"
        self._set_status_text("Listening...")

    async def on_toggle_speech(self, widget: toga.Widget) -> None:
        del widget
        self.playback.toggle_enabled()
        self._refresh_speech_controls()

    async def on_stop_speaking(self, widget: toga.Widget) -> None:
        del widget
        self.playback.stop()
        self._refresh_speech_controls()

    async def _maybe_run_slash_command(self, raw_text: str) -> bool:
        """Execute slash commands. Returns True if handled."""
        if not raw_text.startswith("/"):
            return False
        try:
            tokens = shlex.split(raw_text)
        except ValueError as exc:
            self._set_status_text(f"Command parse error: {exc}")
            return True
        if not tokens:
            return True

        command, args = tokens[0].lower(), tokens[1:]
        if command == "/help":
            self.transcript_view.value = f"{self.transcript_view.value}\n\n[local]\n{HELP_TEXT}".strip()
        elif command == "/new":
            await self.on_new_chat(None)
        elif command == "/clear":
            await self.on_clear_chat(None)
        elif command == "/name" and args:
            self.store.set_user_name(" ".join(args))
            self._set_status_text(f"I'll remember your name: {self.store.memory.user_name}")
        elif command == "/fact" and args:
            self.store.add_fact(" ".join(args))
            self._set_status_text("Fact saved.")
        else:
            self._set_status_text(f"Unknown command: {command}. Try /help.")
        return True

    async def on_send(self, widget: toga.Widget) -> None:
        """Send the compose text, or run it as a slash command."""
        del widget
        if self.controller.is_responding:
            return
        raw_text = (self.prompt_input.value or "").strip()
        if not raw_text:
            self._set_status_text("Type a message first.")
            return
        if await self._maybe_run_slash_command(raw_text):
            self.prompt_input.value = ""
            self._refresh_send_enabled()
            return

        self.playback.stop()
        self.controller.pending_input = self.prompt_input.value or ""
        self.prompt_input.value = ""
        self._set_busy(True)
        self._set_status_text("Thinking...")
        try:
            await self.controller.send_message()
        finally:
            self.prompt_input.value = self.controller.pending_input
            self._set_busy(False)
        if self.controller.model_state is ModelState.READY:
            self._set_status_text("Response received.")

    # -- settings ------------------------------------------------------------

    def _settings_row(self, label: str, control: toga.Widget) -> toga.Box:
        row = toga.Box(style=Pack(direction=ROW, margin=(0, 0, 10, 0)))
        row.add(toga.Label(label, style=Pack(width=110, margin_top=6, font_size=FONT_SIZE_BODY)))
        row.add(control)
        return row

    async def on_open_settings(self, widget: toga.Widget | None) -> None:
        """Edit the system prompt, user name and speech parameters."""
        del widget
        if self.settings_window is not None:
            with contextlib.suppress(Exception):
                self.settings_window.show()
                return
            self.settings_window = None

        memory = self.store.memory
        self.settings_prompt = toga.MultilineTextInput(value=memory.system_prompt, style=Pack(flex=1, height=110))
        self.settings_name = toga.TextInput(value=memory.user_name or "", style=Pack(flex=1))
        self.settings_rate = toga.NumberInput(
            value=self.playback.rate, min=RATE_RANGE[0], max=RATE_RANGE[1], step=10, style=Pack(flex=1)
        )
        self.settings_pitch = toga.NumberInput(
            value=self.playback.pitch, min=PITCH_RANGE[0], max=PITCH_RANGE[1], step=0.1, style=Pack(flex=1)
        )
        self.settings_pitch.enabled = self.playback.supports_pitch
        self.settings_volume = toga.NumberInput(
            value=self.playback.volume, min=VOLUME_RANGE[0], max=VOLUME_RANGE[1], step=0.1, style=Pack(flex=1)
        )
        self.settings_voice = toga.TextInput(
            value=self.playback.voice or "", placeholder="voice id or language, e.g. en-US", style=Pack(flex=1)
        )

        form = toga.Box(style=Pack(direction=COLUMN, margin=14))
        form.add(self._settings_row("System prompt", self.settings_prompt))
        form.add(self._settings_row("Your name", self.settings_name))
        form.add(self._settings_row("Speech rate", self.settings_rate))
        form.add(self._settings_row("Pitch", self.settings_pitch))
        form.add(self._settings_row("Volume", self.settings_volume))
        form.add(self._settings_row("Voice", self.settings_voice))

        button_row = toga.Box(style=Pack(direction=ROW, margin_top=8))
        button_row.add(self._button("Reset Prompt", self.on_reset_prompt))
        button_row.add(self._button("Cancel", self.on_close_settings))
        button_row.add(self._button("Save", self.on_save_settings, accent=True))
        form.add(button_row)

        self.settings_window = toga.Window(title="Settings", size=(560, 420), resizable=False)
        self.settings_window.content = form
        self.settings_window.show()

    async def on_reset_prompt(self, widget: toga.Widget) -> None:
        del widget
        self.controller.reset_system_prompt()
        self.settings_prompt.value = self.store.memory.system_prompt
        self._set_status_text("System prompt reset to default.")

    async def on_close_settings(self, widget: toga.Widget | None) -> None:
        del widget
        if self.settings_window is not None:
            self.settings_window.close()
        self.settings_window = None

    async def on_save_settings(self, widget: toga.Widget) -> None:
        prompt = (self.settings_prompt.value or "").strip()
        if prompt and prompt != self.store.memory.system_prompt:
            self.controller.update_system_prompt(prompt)
        name = (self.settings_name.value or "").strip() or None
        if name != self.store.memory.user_name:
            self.store.set_user_name(name)
        if self.settings_rate.value is not None:
            self.playback.set_rate(float(self.settings_rate.value))
        if self.settings_pitch.value is not None:
            self.playback.set_pitch(float(self.settings_pitch.value))
        if self.settings_volume.value is not None:
            self.playback.set_volume(float(self.settings_volume.value))
        self.playback.set_voice((self.settings_voice.value or "").strip() or None)
        self._set_status_text("Settings saved.")
        await self.on_close_settings(widget)

    def on_exit(self) -> bool:
        """Stop voice I/O before the app exits."""
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
        self.capture.stop_recording()
        self.playback.shutdown()
        return True


def main(chat_config: ChatConfig | None = None) -> FMVoiceChatApp:
    """Briefcase entrypoint."""
    return FMVoiceChatApp(
        formal_name="FM Voice Chat",
        app_id="com.fmvoicechat.app",
        chat_config=chat_config,
    )
