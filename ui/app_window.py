import customtkinter as ctk
import structlog

from models.notification import ScheduledNotification
from models.transaction import Transaction
from services.billing_monitor import ACTIVE, BACKGROUND, INACTIVE, BillingMonitor
from services.events import EventChannel, NOTIFICATION_RECEIVED, OBLIGATION_MATERIALIZED
from services.ledger_service import LedgerService
from services.notification_platform import LocalNotificationPlatform
from services.recurring_service import RecurringService
from ui.components.alert_banner import AlertBanner
from ui.components.confirm_dialog import ConfirmDialog
from utils.constants import (
    APP_HEIGHT,
    APP_NAME,
    APP_WIDTH,
    NOTIFICATION_PUMP_MS,
    NOTIFICATION_TYPE_PAYMENT,
)
from utils.currency import format_currency, format_directed
from utils.date_helpers import format_display, now

log = structlog.get_logger(__name__)

_STATE_COLORS = {
    "due":       "#FF9800",
    "due soon":  "#2196F3",
    "scheduled": ("gray40", "gray70"),
    "ended":     "gray50",
}


class AppWindow(ctk.CTk):
    """Host window: balances, obligations with quick-pay, notification banners.

    Window map/unmap and focus changes drive the monitor's app state; the
    hourly check and the notification pump run on Tk's after() loop.
    """

    def __init__(
        self,
        ledger_service: LedgerService,
        recurring_service: RecurringService,
        monitor: BillingMonitor,
        platform: LocalNotificationPlatform,
        events: EventChannel,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._ledger = ledger_service
        self._recurring = recurring_service
        self._monitor = monitor
        self._platform = platform
        self._events = events
        self._unsubscribers = []
        self._poll_job = None
        self._pump_job = None

        self.title(APP_NAME)
        self.minsize(APP_WIDTH, APP_HEIGHT)
        self.geometry(f"{APP_WIDTH}x{APP_HEIGHT}")

        self.grid_columnconfigure(0, weight=1)
        self.grid_rowconfigure(2, weight=1)

        self._build_balance_bar()
        self._build_banner_area()
        self._build_obligation_list()

        # Handlers may run on the background thread; hop onto the Tk loop.
        self._unsubscribers.append(self._events.subscribe(
            OBLIGATION_MATERIALIZED, lambda **_: self.after(0, self.refresh)
        ))
        self._unsubscribers.append(self._events.subscribe(
            NOTIFICATION_RECEIVED,
            lambda notification, **_: self.after(0, self._show_notification, notification),
        ))

        self.bind("<Map>", self._on_map)
        self.bind("<Unmap>", self._on_unmap)
        self.bind("<FocusIn>", self._on_focus_in)
        self.bind("<FocusOut>", self._on_focus_out)

        self.refresh()
        self.after(200, self._on_start)

    # ── Layout ───────────────────────────────────────────────────────────────
    def _build_balance_bar(self):
        self._balance_bar = ctk.CTkFrame(self, fg_color=("gray85", "gray15"), corner_radius=0, height=44)
        self._balance_bar.grid(row=0, column=0, sticky="ew")

    def _build_banner_area(self):
        self._banner_frame = ctk.CTkFrame(self, fg_color="transparent", height=0)
        self._banner_frame.grid(row=1, column=0, sticky="ew", padx=8)

    def _build_obligation_list(self):
        self._list_frame = ctk.CTkScrollableFrame(self, label_text="Recurring obligations")
        self._list_frame.grid(row=2, column=0, sticky="nsew", padx=8, pady=(4, 8))
        self._list_frame.grid_columnconfigure(0, weight=1)

    # ── Refresh ──────────────────────────────────────────────────────────────
    def refresh(self):
        self._refresh_balances()
        self._refresh_obligations()

    def _refresh_balances(self):
        for w in self._balance_bar.winfo_children():
            w.destroy()
        balances = self._ledger.balances()
        accounts = self._ledger.get_accounts()
        if not accounts:
            ctk.CTkLabel(self._balance_bar, text="No accounts yet", text_color="gray60").pack(
                side="left", padx=12, pady=8
            )
            return
        for account in accounts:
            ctk.CTkLabel(
                self._balance_bar,
                text=f"{account.name}: {format_currency(balances.get(account.id, 0.0))}",
            ).pack(side="left", padx=(12, 8), pady=8)

    def _refresh_obligations(self):
        for w in self._list_frame.winfo_children():
            w.destroy()
        definitions = self._recurring.get_all()
        if not definitions:
            ctk.CTkLabel(self._list_frame, text="No recurring obligations.", text_color="gray60").grid(
                row=0, column=0, pady=20
            )
            return

        moment = now()
        due_soon = {d.id for d in self._recurring.upcoming(as_of=moment)}
        for row, definition in enumerate(definitions):
            state = definition.state(moment)
            if state == "scheduled" and definition.id in due_soon:
                state = "due soon"
            line = ctk.CTkFrame(self._list_frame, fg_color="transparent")
            line.grid(row=row, column=0, sticky="ew", pady=2)
            line.grid_columnconfigure(0, weight=1)

            ctk.CTkLabel(line, text=definition.label, anchor="w").grid(row=0, column=0, sticky="ew", padx=6)
            ctk.CTkLabel(
                line, text=format_directed(definition.amount, definition.direction), width=100,
            ).grid(row=0, column=1, padx=6)
            ctk.CTkLabel(
                line,
                text=f"{definition.frequency} · {format_display(definition.next_due_at)}",
                width=200,
            ).grid(row=0, column=2, padx=6)
            ctk.CTkLabel(
                line, text=state, width=80, text_color=_STATE_COLORS.get(state),
            ).grid(row=0, column=3, padx=6)
            ctk.CTkButton(
                line, text="Pay now", width=80,
                state="disabled" if state == "ended" else "normal",
                command=lambda d=definition: self._confirm_quick_pay(d),
            ).grid(row=0, column=4, padx=6)

    # ── Quick-pay ────────────────────────────────────────────────────────────
    def _confirm_quick_pay(self, definition: Transaction):
        dialog = ConfirmDialog(
            self,
            title="Pay now",
            message=(
                f"Record {format_currency(definition.amount)} for {definition.label} now?\n"
                f"The next due date moves on from {format_display(definition.next_due_at)}."
            ),
            confirm_text="Pay",
        )
        if not dialog.result:
            return
        try:
            self._recurring.quick_pay(definition.id)
        except ValueError as exc:
            self._show_banner("Payment not recorded", str(exc), "warning")
            return
        except Exception:
            log.exception("quick_pay_failed", obligation_id=definition.id)
            self._show_banner("Payment not recorded", "The ledger could not be updated.", "error")
            return
        self.refresh()

    # ── Notifications ────────────────────────────────────────────────────────
    def _show_notification(self, notification: ScheduledNotification):
        content = notification.content
        severity = "info" if content.data.get("type") == NOTIFICATION_TYPE_PAYMENT else "warning"
        self._show_banner(
            content.title, content.body, severity,
            action_text="Open",
            action_cmd=lambda: self._platform.respond(notification),
        )

    def _show_banner(self, title: str, body: str, severity: str,
                     action_text: str | None = None, action_cmd=None):
        banner = AlertBanner(
            self._banner_frame, title=title, body=body, severity=severity,
            action_text=action_text, action_cmd=action_cmd,
            auto_dismiss_ms=60_000,
        )
        banner.pack(fill="x", pady=2)

    def _pump_notifications(self):
        self._platform.deliver_due()
        self._pump_job = self.after(NOTIFICATION_PUMP_MS, self._pump_notifications)

    # ── Lifecycle ────────────────────────────────────────────────────────────
    def _on_start(self):
        self._monitor.on_app_start()
        self.refresh()
        self._pump_notifications()
        self._poll_job = self.after(self._monitor.poll_interval_ms, self._on_poll)

    def _on_poll(self):
        if self._monitor.on_timer():
            self.refresh()
        self._poll_job = self.after(self._monitor.poll_interval_ms, self._on_poll)

    def _set_state(self, state: str):
        if state == self._monitor.app_state:
            return
        if self._monitor.on_app_state_change(state):
            self.refresh()

    def _on_map(self, event):
        if event.widget is self:
            self._set_state(ACTIVE)

    def _on_unmap(self, event):
        if event.widget is self:
            self._set_state(BACKGROUND)

    def _on_focus_in(self, event):
        if event.widget is self:
            self._set_state(ACTIVE)

    def _on_focus_out(self, event):
        if event.widget is self and self._monitor.app_state == ACTIVE:
            self._set_state(INACTIVE)

    def shutdown(self):
        for job in (self._poll_job, self._pump_job):
            if job:
                self.after_cancel(job)
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
