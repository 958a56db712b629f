"""Node transports: JSON-RPC over HTTP and the websocket event stream."""
