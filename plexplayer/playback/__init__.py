"""
Playback core — everything between "play this position" and the sink.

  order.py          — PlayOrder (permutation + cursor)
  single_flight.py  — drop-don't-queue guard
  session.py        — PlaybackSession / PlayerState
  resolver.py       — ticket → StreamReference with retry, prewarm
  orchestrator.py   — the state machine
  recovery.py       — mid-stream self-heal
  seek.py           — scrub drag and keyboard seeking
  keys.py           — play/pause keys
"""
