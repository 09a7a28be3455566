"""
main.py

This is the main entry point for MindfulGen.
It builds the GUI, handles user interactions, and hands every Gemini call to
a background thread so the window never freezes. Logging output is mirrored
into the window through a custom handler.
"""

import sys
import logging
import threading
from tkinter import messagebox, filedialog

import customtkinter as ctk
from dotenv import load_dotenv
from PIL import Image

from api_clients import GeminiClient
from audio_utils import AudioPlayer, export_audio, wav_duration, wav_from_data_url
from chat import FALLBACK_CHAT_REPLY, WELCOME_MESSAGE, ChatSession
from config import get_api_key, load_config, save_config
from errors import ServiceError
from media import data_url_to_bytes, extension_for_mime, image_from_data_url, load_image_as_data_url, split_data_url
from models import IMAGE_SIZES, AppStatus
from pipeline import FALLBACK_SCRIPT, MeditationController, WatermarkController

VOICE_OPTIONS = {
    "Kore": "Firm, clear & bright",
    "Aoede": "Breezy, conversational",
    "Autonoe": "Mature, resonant, calm and wise",
    "Despina": "Warm, inviting, trustworthy",
    "Leda": "Composed, professional, calm",
    "Sulafat": "Warm, persuasive, articulate",
    "Umbriel": "Easy-going, clear",
    "Vindemiatrix": "Calm, mature, smooth, reassuring",
    "Achernar": "Soft, gentle",
    "Enceladus": "Breathy, hushed",
}
ASPECT_RATIOS = ["16:9", "1:1", "4:3", "3:4", "9:16"]
PREVIEW_SIZE = (640, 360)
PLAYBACK_POLL_MS = 500
STATUS_TEXT = {
    AppStatus.IDLE: "Ready.",
    AppStatus.PROCESSING: "✨ Creating your session...",
    AppStatus.SUCCESS: "✅ Your session is ready.",
    AppStatus.ERROR: "❌ Something went wrong.",
}


# --- Custom Logging Handler ---
class TextboxHandler(logging.Handler):
    """A custom logging handler that redirects logs to a CTkTextbox widget."""
    def __init__(self, textbox):
        super().__init__()
        self.textbox = textbox

    def emit(self, record):
        """Writes the log message to the textbox on the UI thread."""
        msg = self.format(record)
        self.textbox.after(0, self._append, msg)

    def _append(self, msg):
        self.textbox.configure(state="normal")
        self.textbox.insert("end", msg + "\n")
        self.textbox.see("end")
        self.textbox.configure(state="disabled")


def fit_preview(img, max_size=PREVIEW_SIZE):
    ratio = min(max_size[0] / img.width, max_size[1] / img.height, 1.0)
    size = (max(1, int(img.width * ratio)), max(1, int(img.height * ratio)))
    return ctk.CTkImage(light_image=img, dark_image=img, size=size)


class App(ctk.CTk):
    def __init__(self, player):
        super().__init__()
        self.title("🧘 MindfulGen AI")
        self.geometry("1100x900")
        ctk.set_appearance_mode("dark")
        ctk.set_default_color_theme("blue")

        self.config = load_config()
        self.player = player
        self.client = GeminiClient(config=self.config)
        self.meditation = MeditationController(
            self.client, player, self.config,
            on_change=lambda status, error: self.after(0, self.render_create_state, status, error),
        )
        self.watermark = WatermarkController(
            self.client,
            on_change=lambda status, error: self.after(0, self.render_watermark_state, status, error),
        )
        self.chat_session = ChatSession(self.client)
        self._preview_images = {}
        self._blank_image = ctk.CTkImage(Image.new("RGBA", (1, 1), (0, 0, 0, 0)), size=(1, 1))

        self._create_widgets()
        self.setup_logging()
        self.load_settings_into_gui()
        self.protocol("WM_DELETE_WINDOW", self.on_close)

    def setup_logging(self):
        log_format = '%(asctime)s - %(levelname)s - %(message)s'
        logger = logging.getLogger()
        logger.setLevel(logging.INFO)
        if logger.hasHandlers(): logger.handlers.clear()
        handler = TextboxHandler(self.log_box)
        handler.setFormatter(logging.Formatter(log_format))
        logger.addHandler(handler)
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(logging.Formatter(log_format))
        logger.addHandler(stream_handler)
        logging.info("Logging configured. Application started.")

    def _create_widgets(self):
        main_frame = ctk.CTkFrame(self, fg_color="transparent")
        main_frame.pack(fill="both", expand=True, padx=10, pady=10)

        tabs = ctk.CTkTabview(main_frame)
        tabs.pack(fill="both", expand=True)

        self.create_tab = tabs.add("Create")
        self.chat_tab = tabs.add("Chat")
        self.watermark_tab = tabs.add("Watermark")
        self.settings_tab = tabs.add("Settings")

        self._create_create_tab_widgets()
        self._create_chat_tab_widgets()
        self._create_watermark_tab_widgets()
        self._create_settings_tab_widgets()

    def _create_create_tab_widgets(self):
        self.create_tab.columnconfigure((0, 1), weight=1)
        self.create_tab.rowconfigure(0, weight=1)
        controls_frame = ctk.CTkFrame(self.create_tab)
        controls_frame.grid(row=0, column=0, padx=10, pady=10, sticky="nsew")
        ctk.CTkLabel(controls_frame, text="What brings you peace?", font=("Arial", 16, "bold")).pack(pady=(20, 5))
        self.topic_entry = ctk.CTkTextbox(controls_frame, height=100)
        self.topic_entry.pack(pady=5, padx=20, fill="x")
        ctk.CTkLabel(controls_frame, text="Image Size", font=("Arial", 12)).pack(pady=(15, 5))
        self.size_selector = ctk.CTkSegmentedButton(controls_frame, values=list(IMAGE_SIZES))
        self.size_selector.pack(pady=5)

        self.generate_button = ctk.CTkButton(controls_frame, text="✨ Generate", command=self.start_session_thread, font=("Arial", 16, "bold"), fg_color="#1f6aa5")
        self.generate_button.pack(pady=(20, 5), ipady=5)
        self.status_label = ctk.CTkLabel(controls_frame, text=STATUS_TEXT[AppStatus.IDLE])
        self.status_label.pack(pady=5)
        self.error_label = ctk.CTkLabel(controls_frame, text="", text_color="#ff6b6b", wraplength=380)
        self.error_label.pack(pady=5)

        button_row = ctk.CTkFrame(controls_frame, fg_color="transparent"); button_row.pack(pady=10)
        self.play_button = ctk.CTkButton(button_row, text="▶️ Play", width=90, command=self.toggle_playback, state="disabled"); self.play_button.pack(side="left", padx=4)
        self.save_image_button = ctk.CTkButton(button_row, text="Save Image", width=90, command=self.save_session_image, state="disabled"); self.save_image_button.pack(side="left", padx=4)
        self.save_audio_button = ctk.CTkButton(button_row, text="Save Audio", width=90, command=self.save_session_audio, state="disabled"); self.save_audio_button.pack(side="left", padx=4)
        button_row2 = ctk.CTkFrame(controls_frame, fg_color="transparent"); button_row2.pack(pady=5)
        self.retry_button = ctk.CTkButton(button_row2, text="Try Again", width=90, command=self.retry_session, state="disabled"); self.retry_button.pack(side="left", padx=4)
        ctk.CTkButton(button_row2, text="Reset", width=90, command=self.reset_session, fg_color="#c42034", hover_color="#851622").pack(side="left", padx=4)

        self.log_box = ctk.CTkTextbox(controls_frame, state="disabled", height=160)
        self.log_box.pack(pady=(15, 10), padx=10, fill="both", expand=True)

        result_frame = ctk.CTkFrame(self.create_tab)
        result_frame.grid(row=0, column=1, padx=10, pady=10, sticky="nsew")
        self.session_title_label = ctk.CTkLabel(result_frame, text="", font=("Arial", 20, "bold"), wraplength=600)
        self.session_title_label.pack(pady=(20, 5))
        self.session_image_label = ctk.CTkLabel(result_frame, text="Your meditation image will appear here.")
        self.session_image_label.pack(pady=10)
        self.script_box = ctk.CTkTextbox(result_frame, wrap="word", state="disabled")
        self.script_box.pack(pady=10, padx=10, fill="both", expand=True)

    def _create_chat_tab_widgets(self):
        self.chat_box = ctk.CTkTextbox(self.chat_tab, wrap="word", state="disabled")
        self.chat_box.pack(fill="both", expand=True, padx=10, pady=10)
        input_row = ctk.CTkFrame(self.chat_tab, fg_color="transparent"); input_row.pack(fill="x", padx=10, pady=(0, 10))
        self.chat_entry = ctk.CTkEntry(input_row, placeholder_text="Ask about mindfulness...")
        self.chat_entry.pack(side="left", fill="x", expand=True, padx=(0, 10))
        self.chat_entry.bind("<Return>", lambda _event: self.start_chat_thread())
        self.send_button = ctk.CTkButton(input_row, text="Send", width=90, command=self.start_chat_thread); self.send_button.pack(side="right")
        ctk.CTkButton(input_row, text="Clear", width=70, command=self.clear_chat).pack(side="right", padx=(0, 10))
        self.append_chat_line("Guide", WELCOME_MESSAGE)

    def _create_watermark_tab_widgets(self):
        self.watermark_tab.columnconfigure((0, 1), weight=1)
        controls = ctk.CTkFrame(self.watermark_tab, fg_color="transparent")
        controls.grid(row=0, column=0, columnspan=2, sticky="ew", padx=10, pady=10)
        ctk.CTkButton(controls, text="Upload Image...", command=self.upload_watermark_image).pack(side="left", padx=5)
        self.instruction_entry = ctk.CTkEntry(controls, width=420, placeholder_text="Optional: describe what to remove or change")
        self.instruction_entry.pack(side="left", padx=5)
        self.remove_button = ctk.CTkButton(controls, text="🪄 Remove Watermark", command=self.start_watermark_thread, state="disabled"); self.remove_button.pack(side="left", padx=5)
        self.save_result_button = ctk.CTkButton(controls, text="Save Result", command=self.save_watermark_result, state="disabled"); self.save_result_button.pack(side="left", padx=5)
        self.watermark_status_label = ctk.CTkLabel(self.watermark_tab, text="Upload an image to begin.", wraplength=900)
        self.watermark_status_label.grid(row=1, column=0, columnspan=2, pady=5)
        ctk.CTkLabel(self.watermark_tab, text="Original", font=("Arial", 14, "bold")).grid(row=2, column=0, pady=5)
        ctk.CTkLabel(self.watermark_tab, text="Result", font=("Arial", 14, "bold")).grid(row=2, column=1, pady=5)
        self.original_image_label = ctk.CTkLabel(self.watermark_tab, text="")
        self.original_image_label.grid(row=3, column=0, padx=10, pady=10)
        self.result_image_label = ctk.CTkLabel(self.watermark_tab, text="")
        self.result_image_label.grid(row=3, column=1, padx=10, pady=10)

    def _create_settings_tab_widgets(self):
        tab = self.settings_tab
        tab.columnconfigure(1, weight=1)
        ctk.CTkLabel(tab, text="Gemini API Key").grid(row=0, column=0, sticky="w", padx=10, pady=8)
        self.gemini_key_entry = ctk.CTkEntry(tab, width=400, show="*", placeholder_text="Leave blank to use the API_KEY environment variable"); self.gemini_key_entry.grid(row=0, column=1, padx=10, sticky="ew")
        ctk.CTkLabel(tab, text="Text Model").grid(row=1, column=0, sticky="w", padx=10, pady=8)
        self.text_model_entry = ctk.CTkEntry(tab, width=400); self.text_model_entry.grid(row=1, column=1, padx=10, sticky="ew")
        ctk.CTkLabel(tab, text="Image Model (1K)").grid(row=2, column=0, sticky="w", padx=10, pady=8)
        self.image_model_entry = ctk.CTkEntry(tab, width=400); self.image_model_entry.grid(row=2, column=1, padx=10, sticky="ew")
        ctk.CTkLabel(tab, text="Image Model (2K/4K)").grid(row=3, column=0, sticky="w", padx=10, pady=8)
        self.image_model_hd_entry = ctk.CTkEntry(tab, width=400); self.image_model_hd_entry.grid(row=3, column=1, padx=10, sticky="ew")
        ctk.CTkLabel(tab, text="TTS Model").grid(row=4, column=0, sticky="w", padx=10, pady=8)
        self.tts_model_entry = ctk.CTkEntry(tab, width=400); self.tts_model_entry.grid(row=4, column=1, padx=10, sticky="ew")
        voice_list = [f"{v} — {d}" for v, d in VOICE_OPTIONS.items()]
        ctk.CTkLabel(tab, text="Narration Voice").grid(row=5, column=0, sticky="w", padx=10, pady=8)
        self.voice_combo = ctk.CTkComboBox(tab, values=voice_list, width=400); self.voice_combo.grid(row=5, column=1, padx=10, sticky="w")
        ctk.CTkLabel(tab, text="Image Aspect Ratio").grid(row=6, column=0, sticky="w", padx=10, pady=8)
        self.aspect_ratio_combo = ctk.CTkComboBox(tab, values=ASPECT_RATIOS, width=200); self.aspect_ratio_combo.grid(row=6, column=1, padx=10, sticky="w")
        self.generate_audio_var = ctk.BooleanVar()
        ctk.CTkCheckBox(tab, text="Narrate sessions with Gemini TTS", variable=self.generate_audio_var).grid(row=7, column=0, columnspan=2, pady=8, padx=10, sticky="w")
        ctk.CTkButton(tab, text="💾 Save Settings", command=self.save_settings_from_gui).grid(row=8, column=0, columnspan=2, pady=20)

    def _extract_voice_name(self, val): return val.split(" — ")[0] if " — " in val else val

    def load_settings_into_gui(self):
        cfg = self.config
        self.gemini_key_entry.insert(0, cfg.get("GEMINI_API_KEY", ""))
        self.text_model_entry.insert(0, cfg.get("TEXT_MODEL", ""))
        self.image_model_entry.insert(0, cfg.get("IMAGE_MODEL", ""))
        self.image_model_hd_entry.insert(0, cfg.get("IMAGE_MODEL_HIGH_RES", ""))
        self.tts_model_entry.insert(0, cfg.get("TTS_MODEL", ""))
        voice = cfg.get("TTS_VOICE", "Kore")
        self.voice_combo.set(f"{voice} — {VOICE_OPTIONS.get(voice, '')}" if voice in VOICE_OPTIONS else voice)
        self.aspect_ratio_combo.set(cfg.get("IMAGE_ASPECT_RATIO", "16:9"))
        self.generate_audio_var.set(cfg.get("GENERATE_AUDIO", True))
        self.size_selector.set(cfg.get("IMAGE_SIZE", "1K"))

    def update_config_from_gui(self):
        """Synchronizes the in-memory config with the Settings tab and pushes it to the controllers."""
        self.config["GEMINI_API_KEY"] = self.gemini_key_entry.get().strip()
        self.config["TEXT_MODEL"] = self.text_model_entry.get().strip() or self.config["TEXT_MODEL"]
        self.config["IMAGE_MODEL"] = self.image_model_entry.get().strip() or self.config["IMAGE_MODEL"]
        self.config["IMAGE_MODEL_HIGH_RES"] = self.image_model_hd_entry.get().strip() or self.config["IMAGE_MODEL_HIGH_RES"]
        self.config["TTS_MODEL"] = self.tts_model_entry.get().strip() or self.config["TTS_MODEL"]
        self.config["TTS_VOICE"] = self._extract_voice_name(self.voice_combo.get())
        self.config["IMAGE_ASPECT_RATIO"] = self.aspect_ratio_combo.get()
        self.config["GENERATE_AUDIO"] = self.generate_audio_var.get()
        self.config["IMAGE_SIZE"] = self.size_selector.get() or "1K"
        self.client.config.update(self.config)
        self.meditation.config.update(self.config)

    def save_settings_from_gui(self):
        self.update_config_from_gui()
        save_config(self.config)
        messagebox.showinfo("Success", "Settings have been saved successfully.")

    # --- Create tab ---
    def start_session_thread(self):
        topic = self.topic_entry.get("1.0", "end-1c").strip()
        if not topic: messagebox.showerror("Error", "Please enter a topic."); return
        self.update_config_from_gui()
        if not get_api_key(self.config): messagebox.showerror("API Key Missing", "Please set API_KEY or enter your Gemini API key in Settings."); return
        if self.meditation.status is AppStatus.PROCESSING: return
        if self.meditation.is_busy: messagebox.showinfo("Please Wait", "The previous session is still finishing in the background. Try again in a moment."); return
        threading.Thread(target=self.meditation.create_session, args=(topic, self.size_selector.get()), daemon=True).start()

    def render_create_state(self, status, error):
        self.status_label.configure(text=STATUS_TEXT[status])
        self.generate_button.configure(state="disabled" if status is AppStatus.PROCESSING else "normal")
        self.retry_button.configure(state="normal" if status is AppStatus.ERROR else "disabled")
        self.error_label.configure(text=str(error) if error else "")
        session = self.meditation.session
        if status is AppStatus.SUCCESS and session:
            self.show_session(session)
        elif status is AppStatus.ERROR:
            self.set_textbox(self.script_box, FALLBACK_SCRIPT)
            self.clear_session_view(keep_script=True)
        else:
            self.clear_session_view()
        self.play_button.configure(text="▶️ Play")

    def show_session(self, session):
        self.session_title_label.configure(text=session.topic)
        self.set_textbox(self.script_box, session.script)
        try:
            self._preview_images["session"] = fit_preview(image_from_data_url(session.image_url))
            self.session_image_label.configure(image=self._preview_images["session"], text="")
        except ServiceError as e:
            logging.error(f"Could not display session image: {e}")
        self.save_image_button.configure(state="normal")
        has_audio = bool(session.audio_url)
        self.play_button.configure(state="normal" if has_audio else "disabled")
        self.save_audio_button.configure(state="normal" if has_audio else "disabled")
        if has_audio:
            logging.info(f"Narration length: {wav_duration(wav_from_data_url(session.audio_url)):.1f}s")

    def clear_session_view(self, keep_script=False):
        self.session_title_label.configure(text="")
        self._preview_images.pop("session", None)
        self.session_image_label.configure(image=self._blank_image, text="Your meditation image will appear here.")
        if not keep_script:
            self.set_textbox(self.script_box, "")
        for button in (self.play_button, self.save_image_button, self.save_audio_button):
            button.configure(state="disabled")

    def toggle_playback(self):
        try:
            playing = self.meditation.toggle_playback()
        except (RuntimeError, ServiceError) as e:
            logging.error(f"Playback failed: {e}")
            messagebox.showerror("Playback Error", str(e))
            playing = False
        if playing:
            self.play_button.configure(text="⏸️ Pause")
            self.after(PLAYBACK_POLL_MS, self.watch_playback)
        else:
            self.play_button.configure(text="▶️ Resume" if self.player.is_paused else "▶️ Play")

    def watch_playback(self):
        """Puts the Play button back once ffplay reaches the end of the narration on its own."""
        if self.player.reap():
            self.play_button.configure(text="▶️ Play")
        elif self.player.is_playing:
            self.after(PLAYBACK_POLL_MS, self.watch_playback)

    def save_session_image(self):
        session = self.meditation.session
        if not session: return
        mime_type, _ = split_data_url(session.image_url)
        ext = extension_for_mime(mime_type)
        path = filedialog.asksaveasfilename(defaultextension=ext, filetypes=[("Image", f"*{ext}")])
        if path:
            with open(path, "wb") as f: f.write(data_url_to_bytes(session.image_url))
            logging.info(f"Image saved to {path}")

    def save_session_audio(self):
        session = self.meditation.session
        if not session or not session.audio_url: return
        path = filedialog.asksaveasfilename(defaultextension=".wav", filetypes=[("WAV audio", "*.wav"), ("MP3 audio", "*.mp3")])
        if path:
            try:
                export_audio(wav_from_data_url(session.audio_url), path)
            except Exception as e:
                logging.error(f"❌ Failed to save audio: {e}", exc_info=True); messagebox.showerror("Error", f"Failed to save audio: {e}")

    def retry_session(self):
        self.meditation.retry()

    def reset_session(self):
        self.meditation.reset()
        self.topic_entry.delete("1.0", "end")

    # --- Chat tab ---
    def append_chat_line(self, speaker, text):
        self.chat_box.configure(state="normal")
        self.chat_box.insert("end", f"{speaker}: {text}\n\n")
        self.chat_box.see("end")
        self.chat_box.configure(state="disabled")

    def start_chat_thread(self):
        text = self.chat_entry.get().strip()
        if not text or self.chat_session.is_busy: return
        self.chat_entry.delete(0, "end")
        self.append_chat_line("You", text)
        self.send_button.configure(state="disabled", text="Thinking...")
        threading.Thread(target=self.run_chat_turn, args=(text,), daemon=True).start()

    def run_chat_turn(self, text):
        try:
            reply = self.chat_session.send(text)
            reply_text = reply.text if reply else None
        except ServiceError as e:
            logging.error(f"Chat failed: {e}")
            reply_text = FALLBACK_CHAT_REPLY
        self.after(0, self.on_chat_reply, reply_text)

    def on_chat_reply(self, reply_text):
        if reply_text:
            self.append_chat_line("Guide", reply_text)
        self.send_button.configure(state="normal", text="Send")

    def clear_chat(self):
        self.chat_session.clear()
        self.set_textbox(self.chat_box, "")
        self.append_chat_line("Guide", WELCOME_MESSAGE)

    # --- Watermark tab ---
    def upload_watermark_image(self):
        path = filedialog.askopenfilename(filetypes=[("Images", "*.png *.jpg *.jpeg *.webp")])
        if not path: return
        try:
            data_url = load_image_as_data_url(path)
        except (OSError, ServiceError) as e:
            messagebox.showerror("Error", f"Could not open image: {e}"); return
        if self.watermark.load_image(data_url):
            self._preview_images["original"] = fit_preview(image_from_data_url(data_url), (420, 420))
            self.original_image_label.configure(image=self._preview_images["original"])

    def start_watermark_thread(self):
        if self.watermark.image is None: return
        if self.watermark.is_busy: messagebox.showinfo("Please Wait", "The previous edit is still finishing in the background. Try again in a moment."); return
        self.update_config_from_gui()
        if not get_api_key(self.config): messagebox.showerror("API Key Missing", "Please set API_KEY or enter your Gemini API key in Settings."); return
        threading.Thread(target=self.watermark.process, args=(self.instruction_entry.get(),), daemon=True).start()

    def render_watermark_state(self, status, error):
        image = self.watermark.image
        self.remove_button.configure(state="normal" if image is not None and status is not AppStatus.PROCESSING else "disabled")
        if status is AppStatus.PROCESSING:
            self.watermark_status_label.configure(text="AI is working its magic... This usually takes about 5-10 seconds.")
        elif status is AppStatus.ERROR:
            self.watermark_status_label.configure(text=f"❌ {error}")
        elif status is AppStatus.SUCCESS and image and image.result:
            self.watermark_status_label.configure(text="✅ Done.")
            self._preview_images["result"] = fit_preview(image_from_data_url(image.result), (420, 420))
            self.result_image_label.configure(image=self._preview_images["result"])
        else:
            self.watermark_status_label.configure(text="Ready." if image else "Upload an image to begin.")
            self._preview_images.pop("result", None)
            self.result_image_label.configure(image=self._blank_image)
        self.save_result_button.configure(state="normal" if image and image.result else "disabled")

    def save_watermark_result(self):
        image = self.watermark.image
        if not image or not image.result: return
        ext = extension_for_mime(split_data_url(image.result)[0])
        path = filedialog.asksaveasfilename(defaultextension=ext, filetypes=[("Image", f"*{ext}")])
        if path:
            with open(path, "wb") as f: f.write(data_url_to_bytes(image.result))
            logging.info(f"Cleaned image saved to {path}")

    # --- Helpers ---
    def set_textbox(self, textbox, text):
        textbox.configure(state="normal")
        textbox.delete("1.0", "end")
        textbox.insert("1.0", text)
        textbox.configure(state="disabled")

    def on_close(self):
        self.player.stop()
        self.destroy()


def main():
    load_dotenv()
    with AudioPlayer() as player:
        app = App(player)
        app.mainloop()


if __name__ == "__main__":
    main()
