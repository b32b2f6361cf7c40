"""Night planning and sequential task execution against an external agent."""
