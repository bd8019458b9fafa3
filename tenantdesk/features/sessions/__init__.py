"""
Session feature module.

Server-side session store (active organization pointer per login session) and
the client-side active-organization switch protocol.
"""
