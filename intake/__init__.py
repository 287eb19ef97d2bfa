"""Voice-driven structured data intake.

A declarative tool definition (ordered fields, prompts, validation rules)
drives a spoken conversation; collected values are normalized, checkpointed
to a session store and handed off to an external API or database.  The
entry point is ``intake.session.VoiceIntakeSession``.
"""
