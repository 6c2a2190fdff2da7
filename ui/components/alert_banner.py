import customtkinter as ctk
from utils.constants import SEVERITY_COLORS


class AlertBanner(ctk.CTkFrame):
    """Dismissible banner for a delivered notification.

    Closes itself after auto_dismiss_ms when that is set.
    """

    def __init__(self, master, title: str, body: str = "", severity: str = "info",
                 action_text: str | None = None, action_cmd=None,
                 auto_dismiss_ms: int | None = None, **kwargs):
        color = SEVERITY_COLORS.get(severity, SEVERITY_COLORS["info"])
        super().__init__(master, fg_color=color, corner_radius=6, **kwargs)
        self.grid_columnconfigure(0, weight=1)

        text = f"{title}  ·  {body}" if body else title
        ctk.CTkLabel(
            self, text=text, text_color="white",
            anchor="w", padx=10, pady=6
        ).grid(row=0, column=0, sticky="ew")

        btn_frame = ctk.CTkFrame(self, fg_color="transparent")
        btn_frame.grid(row=0, column=1, padx=(0, 4))

        if action_text and action_cmd:
            ctk.CTkButton(
                btn_frame, text=action_text, width=60, height=24,
                fg_color="transparent", border_width=1, border_color="white",
                text_color="white", command=lambda: self._run_action(action_cmd),
            ).pack(side="left", padx=2)

        ctk.CTkButton(
            btn_frame, text="✕", width=28, height=24,
            fg_color="transparent",
            text_color="white",
            command=self.destroy,
        ).pack(side="left")

        if auto_dismiss_ms:
            self.after(auto_dismiss_ms, self._expire)

    def _run_action(self, action_cmd):
        action_cmd()
        self.destroy()

    def _expire(self):
        if self.winfo_exists():
            self.destroy()
