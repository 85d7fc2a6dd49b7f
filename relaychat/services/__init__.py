"""
SERVICES PACKAGE
=================

Business logic lives here. The relay (relaychat.main) and the client-side
session both build on these modules; only fetch_client touches the network.

MODULES:
    fetch_client  - RetryingFetchClient: httpx calls with exponential backoff
    normalizer    - turns the upstream's varying JSON shapes into canonical results
    commands      - "/imagine" and "/img" command parsing
    model_router  - operation-type detection and model catalog lookup
    events        - typed per-session publish/subscribe
    conversation  - ConversationController: messages, submit flow, status
    session       - ChatSession: wires the above together for one conversation
    upstream      - UpstreamClient: the relay's authenticated calls to the inference API
"""
