"""Real-time infrastructure — Redis pub/sub + WebSocket session hub.

Learn: A profile update flows through two hops:
1. ProfileService → notifier → Publisher → Redis PUBLISH on `messages`
2. Subscriber (Redis SUBSCRIBE) → SessionHub.deliver → every open socket
   of that user

Going through Redis means any API process can commit the write while a
different process holds the user's sockets.
"""
