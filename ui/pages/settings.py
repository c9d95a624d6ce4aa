# ui/pages/settings.py
from __future__ import annotations

import flet as ft

from core.settings import BACKGROUND_INTERVAL_CHOICES, UI


class SettingsPage:
    def __init__(self, app):
        self.app = app

        self.status_calendar = ft.Text()
        self.last_full_sync = ft.Text()
        self.last_sync = ft.Text()
        self.last_push = ft.Text()
        self.queue_state = ft.Text()

        self.connect_btn = ft.ElevatedButton(
            "Подключить Google", icon=ft.Icons.LINK, on_click=self.connect_google
        )
        self.disconnect_btn = ft.OutlinedButton(
            "Отключить", icon=ft.Icons.LINK_OFF, on_click=self.disconnect_google
        )
        self.sync_btn = ft.OutlinedButton("Синхронизировать", icon=ft.Icons.SYNC, on_click=self.sync_now)
        self.resync_btn = ft.OutlinedButton(
            "Полная ресинхронизация", icon=ft.Icons.SYNC_PROBLEM, on_click=self.full_resync
        )
        self.retry_btn = ft.TextButton(
            "Повторить неудачные", icon=ft.Icons.REPLAY, on_click=self.retry_failed
        )
        self.clear_btn = ft.TextButton(
            "Очистить очередь", icon=ft.Icons.DELETE_SWEEP, on_click=self.clear_queue
        )
        self.interval_dd = ft.Dropdown(
            label="Фоновая синхронизация",
            width=240,
            value=self._interval_key(app.sync_interval_min),
            options=[
                ft.dropdown.Option(self._interval_key(v), f"каждые {v} мин" if v else "вручную")
                for v in BACKGROUND_INTERVAL_CHOICES
            ],
            on_change=self.on_interval_change,
        )
        self.refresh_log_btn = ft.TextButton("Обновить лог", icon=ft.Icons.ARTICLE, on_click=self.refresh_log)
        self.log_view = ft.Text("", selectable=True, size=12)

        content = ft.Column(
            controls=[
                ft.Text("Настройки", size=24, weight=ft.FontWeight.BOLD),
                self.status_calendar,
                self.last_full_sync,
                self.last_sync,
                self.last_push,
                self.queue_state,
                ft.Row([self.connect_btn, self.disconnect_btn, self.sync_btn, self.resync_btn], spacing=12),
                ft.Row([self.interval_dd, self.retry_btn, self.clear_btn], spacing=12),
                ft.Column([
                    ft.Text("Лог синхронизации", size=18, weight=ft.FontWeight.W_600),
                    ft.Container(self.log_view, height=220, padding=10, bgcolor=UI.theme.surface_bg),
                    self.refresh_log_btn,
                ], spacing=8),
            ],
            expand=True,
            spacing=16,
            scroll=ft.ScrollMode.AUTO,
        )
        self.view = ft.Container(content=content, expand=True, padding=20)

    @staticmethod
    def _interval_key(value) -> str:
        return str(value) if value else "off"

    def _format_dt(self, value) -> str:
        if not value:
            return "—"
        return value.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")

    def _notify(self, text: str):
        self.refresh_status()
        self.app.toast(text)

    def refresh_status(self):
        status = self.app.sync_status() or {}
        connected = "подключён" if status.get("connected") else "не подключён"
        cursor = "есть" if status.get("has_cursor") else "нет"
        self.status_calendar.value = f"Google Calendar: {connected} (курсор: {cursor})"
        self.last_full_sync.value = "Последняя полная синхронизация: " + self._format_dt(status.get("last_full_sync"))
        self.last_sync.value = "Последний pull: " + self._format_dt(status.get("last_sync"))
        self.last_push.value = "Последний push: " + self._format_dt(status.get("last_push"))
        self.queue_state.value = (
            f"В очереди: {status.get('pending', 0)}, из них с ошибкой: {status.get('failed', 0)}"
        )
        self.log_view.value = self.app.read_sync_log()
        self.app.page.update()

    def connect_google(self, _):
        try:
            self.app.connect_google()
        except Exception as e:
            self.status_calendar.value = f"Ошибка: {e}"
            self.app.page.update()
            return
        self._notify("Google подключён")

    def disconnect_google(self, _):
        self.app.disconnect_google()
        self._notify("Google отключён")

    def sync_now(self, _):
        report = self.app.sync_now()
        self._notify(report.summary())

    def full_resync(self, _):
        report = self.app.force_full_resync()
        self._notify(report.summary())

    def retry_failed(self, _):
        count = self.app.queue.retry_failed()
        self._notify(f"Повторно отправлено операций: {count}")

    def clear_queue(self, _):
        count = self.app.queue.clear()
        self._notify(f"Удалено операций: {count}")

    def on_interval_change(self, e: ft.ControlEvent):
        value = e.control.value
        self.app.set_sync_interval(None if value == "off" else int(value))

    def refresh_log(self, _):
        self.log_view.value = self.app.read_sync_log()
        self.app.page.update()
