"""
Intelligence Layer

Language-model backed interpretation of caller messages (intents, booking
details, yes/no answers) and the per-conversation session state.

Usage:
    from dental_desk.core.intelligence.intent import get_intent_classifier
    from dental_desk.core.intelligence.session import get_session_store

    result = await get_intent_classifier().classify("I'd like to book a cleaning")
    print(result.intents)  # [Intent.BOOKING]

    session = get_session_store().get("+15550102000")
"""
