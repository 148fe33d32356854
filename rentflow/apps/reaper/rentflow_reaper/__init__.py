"""RentFlow Reaper - background sweeps outside the request/response core."""
