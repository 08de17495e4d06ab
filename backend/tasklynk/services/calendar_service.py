from datetime import timedelta
from icalendar import Alarm, Calendar, Event

from tasklynk.utils.clock import parse_ts


def generate_deadline_ics(job_id: str, display_id: str, title: str, deadline: str,
                          work_type: str | None = None, instructions: str | None = None) -> bytes:
    cal = Calendar()
    cal.add("prodid", "-//TaskLynk//EN")
    cal.add("version", "2.0")

    due = parse_ts(deadline)
    event = Event()
    event.add("uid", f"{job_id}@tasklynk")
    event.add("summary", f"Due: {display_id} {title}")
    event.add("dtstart", due - timedelta(minutes=30))
    event.add("dtend", due)

    description_parts = []
    if work_type:
        description_parts.append(f"Service: {work_type}")
    if instructions:
        description_parts.append(instructions[:1000])
    if description_parts:
        event.add("description", "\n".join(description_parts))

    # Reminders: a day, three hours and one hour before
    for delta in [timedelta(days=1), timedelta(hours=3), timedelta(hours=1)]:
        alarm = Alarm()
        alarm.add("action", "DISPLAY")
        alarm.add("trigger", -delta)
        alarm.add("description", f"Order {display_id} is due soon")
        event.add_component(alarm)

    cal.add_component(event)
    return cal.to_ical()
