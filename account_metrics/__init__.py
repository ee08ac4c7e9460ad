"""
Correlates a user's journey through the account service.

A flow id handed out at the start of a journey is verified (:mod:`.flow`),
carried along with the credentials issued to the user (:mod:`.context`), and
stamped on the activity events emitted as those credentials are used
(:mod:`.activity`, :mod:`.devices`).
"""
