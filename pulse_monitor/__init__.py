"""
Pulse Monitor: finger-on-lens PPG heart-rate measurement.
Cover the camera and torch with a fingertip; the system collects the
brightness of the lit tissue for a fixed session, estimates BPM from the
peak-to-peak intervals and classifies the result for the user's age.
"""

__version__ = "0.1.0"
__author__ = "pulse_monitor"
