from .kubevirt import ClientBuilder, KubevirtClient, new_kubevirt_client
from .management import MachineClient

__all__ = ["ClientBuilder", "KubevirtClient", "MachineClient", "new_kubevirt_client"]
