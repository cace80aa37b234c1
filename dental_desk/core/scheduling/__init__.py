"""
Scheduling Module

Slot matching, the calendar client, the booking/cancellation/reschedule
flows and the turn orchestrator that drives them.

Usage:
    from dental_desk.core.scheduling.engine import handle_turn

    reply = await handle_turn(
        conversation_id="+15550102000",
        text="I'd like a cleaning tomorrow at 10, I'm Jane Doe",
        contact_id="+15550102000",
    )
"""
