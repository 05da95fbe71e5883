class InvalidExperimentError(ValueError):
    """An experiment definition was rejected at registration time."""

    def __init__(self, experiment_id: str, reason: str):
        self.experiment_id = experiment_id
        self.reason = reason
        super().__init__(f"Invalid experiment '{experiment_id}': {reason}")
