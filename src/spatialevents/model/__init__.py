"""
The MODEL layer contains the event data and everything derived from it.
It has NO knowledge of time, frames or where the events come from.
It deals with Storage, Geometry, Spatial Queries and I/O.
"""
