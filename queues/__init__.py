"""Walk-in and appointment queue dispatcher.

Models, dispatcher services, HTTP views and WebSocket consumers for
issuing tokens and keeping every queue viewer in step.
"""
