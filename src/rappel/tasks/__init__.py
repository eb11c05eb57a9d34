"""
Task subsystem.

Components:
- task_models.py: data structures (Task, Reminder, ReminderKind, TaskStatus)
- time_utils.py: zone-aware parsing/formatting helpers
- reminders.py: reminder instants for a due time
- task_store.py: JSON-file storage + query/update helpers
- task_scheduler.py: timer-based scheduler that delivers reminders
- task_api.py: high-level create/reschedule/cancel helpers used by connectors
"""
