"""
Kinescope - browse Kinesis streams over HTTP.

Workers exchange typed requests over an in-process message bus; the stream
access worker reads shards from the trim horizon, one bounded page per call.
"""

__version__ = "0.1.0"
