"""Game domain services: grid model, chain reaction engine, turn tracking.

Everything here is pure simulation with no transport or storage concerns.
The socket server, peer clients and tests all drive the same code, which is
what keeps a client's provisional board and the server's board identical.
"""
