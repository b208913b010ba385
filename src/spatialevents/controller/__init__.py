"""
Event Source Control
====================
The layer between backends and the event data.

Why is this file needed?
------------------------
1. Time: It maps dt, duration and the data interval to a range of frames and
   tracks the current time.
2. Loading: It defines the chunked load contract backends implement to fill
   the event buffer incrementally.

Note: This package owns the model objects; the model never imports it.
"""
