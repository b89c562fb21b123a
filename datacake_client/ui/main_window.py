from __future__ import annotations

import threading
import traceback

import customtkinter as ctk

from datacake_client.config import AppSettings, ConfigurationError
from datacake_client.logging_utils import configure_logging
from datacake_client.models import BaseUrlMeta, Task
from datacake_client.services import DatacakeService
from datacake_client.session import ApiSession

SOURCE_LABELS = {
	"env": "configured",
	"auto": "detected from dev tooling",
	"auto-probe": "found by probing",
	"fallback": "fallback",
	"manual": "set manually",
}


class MainWindow(ctk.CTk):
	def __init__(self, service: DatacakeService):
		super().__init__()
		self._service = service
		self._tasks: list[Task] = []
		self.title("Datacake Tasks")
		self.geometry("900x700")
		self.minsize(720, 560)

		self._status_label = ctk.CTkLabel(self, text="Not signed in")
		self._status_label.pack(anchor="w", padx=16, pady=(16, 4))

		connection_row = ctk.CTkFrame(self)
		connection_row.pack(fill="x", padx=16, pady=(0, 8))

		self._connection_label = ctk.CTkLabel(connection_row, text="")
		self._connection_label.pack(anchor="w", padx=8, pady=(8, 2))

		self._connection_hint_label = ctk.CTkLabel(connection_row, text="", text_color="#d14343")
		self._connection_hint_label.pack(anchor="w", padx=8, pady=(0, 4))

		self._base_url_entry = ctk.CTkEntry(
			connection_row,
			placeholder_text="http://192.168.0.10:8000/api",
			width=360,
		)
		self._base_url_entry.pack(side="left", padx=(8, 6), pady=8)

		ctk.CTkButton(connection_row, text="Use address", command=self._apply_base_url).pack(
			side="left", padx=6, pady=8
		)

		self._detect_btn = ctk.CTkButton(connection_row, text="Detect backend", command=self._detect_backend)
		self._detect_btn.pack(side="left", padx=6, pady=8)

		self._login_frame = ctk.CTkFrame(self)
		ctk.CTkLabel(self._login_frame, text="Username or e-mail").pack(anchor="w", padx=12, pady=(12, 2))
		self._identifier_entry = ctk.CTkEntry(self._login_frame, width=320)
		self._identifier_entry.pack(anchor="w", padx=12, pady=(0, 6))

		ctk.CTkLabel(self._login_frame, text="Password").pack(anchor="w", padx=12, pady=(6, 2))
		self._password_entry = ctk.CTkEntry(self._login_frame, width=320, show="*")
		self._password_entry.pack(anchor="w", padx=12, pady=(0, 6))

		self._sign_in_btn = ctk.CTkButton(self._login_frame, text="Sign in", command=self._sign_in)
		self._sign_in_btn.pack(anchor="w", padx=12, pady=8)

		self._login_message_label = ctk.CTkLabel(self._login_frame, text="", text_color="#d14343")
		self._login_message_label.pack(anchor="w", padx=12, pady=(0, 12))

		self._tasks_frame = ctk.CTkFrame(self)
		tasks_actions = ctk.CTkFrame(self._tasks_frame)
		tasks_actions.pack(fill="x", padx=12, pady=(12, 6))

		self._new_task_entry = ctk.CTkEntry(tasks_actions, placeholder_text="New task title", width=320)
		self._new_task_entry.pack(side="left", padx=(8, 6), pady=8)

		ctk.CTkButton(tasks_actions, text="Add", command=self._add_task).pack(side="left", padx=6, pady=8)
		ctk.CTkButton(tasks_actions, text="Refresh", command=self._load_tasks).pack(side="left", padx=6, pady=8)
		ctk.CTkButton(tasks_actions, text="Sign out", command=self._sign_out).pack(side="right", padx=8, pady=8)

		self._tasks_message_label = ctk.CTkLabel(self._tasks_frame, text="")
		self._tasks_message_label.pack(anchor="w", padx=12, pady=(0, 4))

		self._task_list = ctk.CTkScrollableFrame(self._tasks_frame)
		self._task_list.pack(fill="both", expand=True, padx=12, pady=(0, 12))

		self._unsubscribe_unauthorized = self._service.subscribe_unauthorized(self._on_unauthorized)
		self.protocol("WM_DELETE_WINDOW", self._on_close)

		meta = self._service.base_url_meta()
		self._render_connection(meta)
		if meta.needs_manual_configuration:
			self._detect_backend()
		self._show_login()
		self._refresh_auth_state()

	def _run_in_background(self, call, *args, on_success=None, on_error=None):
		def worker():
			try:
				result = call(*args)
			except Exception as exc:
				traceback.print_exc()
				message = f"{type(exc).__name__}: {exc}"
				if on_error:
					self.after(0, lambda: on_error(message))
				return
			if on_success:
				self.after(0, lambda: on_success(result))

		threading.Thread(target=worker, daemon=True).start()

	def _render_connection(self, meta: BaseUrlMeta):
		source = SOURCE_LABELS.get(meta.source, meta.source)
		self._connection_label.configure(text=f"Backend: {meta.resolved_base_url} ({source})")
		if meta.needs_manual_configuration:
			self._connection_hint_label.configure(
				text="Backend address not detected. Enter it above or set DATACAKE_API_URL."
			)
		else:
			self._connection_hint_label.configure(text="")

	def _detect_backend(self):
		self._detect_btn.configure(state="disabled")
		self._connection_label.configure(text="Looking for the backend...")

		def done(meta: BaseUrlMeta):
			self._detect_btn.configure(state="normal")
			self._render_connection(meta)

		def failed(message: str):
			self._detect_btn.configure(state="normal")
			self._connection_hint_label.configure(text=message)

		self._run_in_background(self._service.detect_backend, on_success=done, on_error=failed)

	def _apply_base_url(self):
		url = self._base_url_entry.get().strip()
		if not url:
			self._connection_hint_label.configure(text="Enter the backend address first.")
			return
		try:
			meta = self._service.configure_base_url(url)
		except ConfigurationError as exc:
			self._connection_hint_label.configure(text=str(exc))
			return
		self._render_connection(meta)

	def _show_login(self):
		self._tasks_frame.pack_forget()
		self._login_frame.pack(fill="both", expand=True, padx=16, pady=(0, 16))

	def _show_tasks(self):
		self._login_frame.pack_forget()
		self._tasks_frame.pack(fill="both", expand=True, padx=16, pady=(0, 16))

	def _refresh_auth_state(self):
		def done(state):
			if state.is_signed_in:
				self._status_label.configure(text=f"Signed in as {state.username or state.email or 'user'}")
				self._show_tasks()
				self._load_tasks()
			else:
				self._status_label.configure(text="Not signed in")
				self._show_login()

		self._run_in_background(self._service.auth_state, on_success=done)

	def _sign_in(self):
		identifier = self._identifier_entry.get().strip()
		password = self._password_entry.get()
		if not identifier or not password:
			self._login_message_label.configure(text="Enter your username and password.")
			return

		self._login_message_label.configure(text="")
		self._sign_in_btn.configure(state="disabled")
		self._status_label.configure(text="Signing in...")

		def done(state):
			self._sign_in_btn.configure(state="normal")
			self._password_entry.delete(0, "end")
			if state.is_signed_in:
				self._status_label.configure(text=f"Signed in as {state.username or identifier}")
				self._show_tasks()
				self._load_tasks()
			else:
				self._status_label.configure(text="Not signed in")
				self._login_message_label.configure(text="Signed in, but the profile could not be loaded.")

		def failed(message: str):
			self._sign_in_btn.configure(state="normal")
			self._status_label.configure(text="Not signed in")
			self._login_message_label.configure(text=message)

		self._run_in_background(self._service.sign_in, identifier, password, on_success=done, on_error=failed)

	def _sign_out(self):
		def done(_result):
			self._status_label.configure(text="Not signed in")
			self._render_tasks([])
			self._show_login()

		self._run_in_background(self._service.sign_out, on_success=done)

	def _on_unauthorized(self):
		self.after(0, self._handle_session_expired)

	def _handle_session_expired(self):
		self._status_label.configure(text="Session expired. Sign in again.")
		self._render_tasks([])
		self._show_login()

	def _load_tasks(self):
		self._tasks_message_label.configure(text="Loading tasks...")
		self._run_in_background(self._service.list_tasks, on_success=self._render_tasks, on_error=self._show_task_error)

	def _add_task(self):
		title = self._new_task_entry.get().strip()
		if not title:
			self._tasks_message_label.configure(text="Enter a title for the task.")
			return

		def done(_task):
			self._new_task_entry.delete(0, "end")
			self._load_tasks()

		self._run_in_background(
			self._service.create_task,
			{"title": title},
			on_success=done,
			on_error=self._show_task_error,
		)

	def _toggle_task(self, task_id: int):
		def done(task: Task):
			state = "completed" if task.is_completed else "pending"
			self._tasks_message_label.configure(text=f'Task "{task.title}" marked as {state}.')
			self._load_tasks()

		self._run_in_background(self._service.toggle_task, task_id, on_success=done, on_error=self._show_task_error)

	def _delete_task(self, task_id: int):
		self._run_in_background(
			self._service.delete_task,
			task_id,
			on_success=lambda _result: self._load_tasks(),
			on_error=self._show_task_error,
		)

	def _show_task_error(self, message: str):
		self._tasks_message_label.configure(text=message)

	def _render_tasks(self, tasks: list[Task]):
		self._tasks = list(tasks)
		for child in self._task_list.winfo_children():
			child.destroy()

		if not self._tasks:
			self._tasks_message_label.configure(text="No tasks yet.")
			return

		self._tasks_message_label.configure(text=f"{len(self._tasks)} task(s)")
		for task in self._tasks:
			row = ctk.CTkFrame(self._task_list)
			row.pack(fill="x", padx=4, pady=2)

			done_var = ctk.BooleanVar(value=task.is_completed)
			ctk.CTkCheckBox(
				row,
				text=self._describe_task(task),
				variable=done_var,
				command=lambda task_id=task.id: self._toggle_task(task_id),
			).pack(side="left", padx=8, pady=6)

			ctk.CTkButton(
				row,
				text="Delete",
				width=70,
				command=lambda task_id=task.id: self._delete_task(task_id),
			).pack(side="right", padx=8, pady=6)

	@staticmethod
	def _describe_task(task: Task) -> str:
		parts = [task.title]
		if task.due_date:
			parts.append(f"due {task.due_date}")
		if task.checklist_items:
			done_count = sum(1 for item in task.checklist_items if item.done)
			parts.append(f"{done_count}/{len(task.checklist_items)} checked")
		return " | ".join(parts)

	def _on_close(self):
		self._unsubscribe_unauthorized()
		self._service.close()
		self.destroy()


def build_service(settings: AppSettings) -> DatacakeService:
	return DatacakeService.from_session(ApiSession.from_settings(settings))


def run_app() -> None:
	ctk.set_appearance_mode("System")
	ctk.set_default_color_theme("blue")

	try:
		settings = AppSettings.from_env()
	except ConfigurationError as exc:
		configure_logging()
		app = ctk.CTk()
		app.title("Datacake Tasks - Configuration Error")
		app.geometry("760x360")
		message = ctk.CTkTextbox(app)
		message.pack(fill="both", expand=True, padx=16, pady=16)
		message.insert(
			"1.0",
			"Configuration error. Fix the environment variables and restart:\n\n"
			f"{exc}\n\n"
			"Optional:\n"
			"- DATACAKE_API_URL (e.g. http://192.168.0.10:8000/api)\n"
			"- DATACAKE_API_PORT\n"
			"- DATACAKE_PLATFORM / DATACAKE_IS_DEVICE\n",
		)
		app.mainloop()
		return

	configure_logging(settings.log_level)
	window = MainWindow(build_service(settings))
	window.mainloop()
