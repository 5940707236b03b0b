import json
from pathlib import Path


class ContractUtility:
    """
    Utility for loading the contract ABIs shipped with the package.
    """

    ABI_DIR = Path(__file__).parent.parent / "abi"

    def get_contract_abi(self, contract_name: str) -> list:
        """Fetches ABI of the given contract from the abi folder"""
        contract_path = (self.ABI_DIR / f"{contract_name}.json").resolve()

        with contract_path.open() as file:
            contract_data = json.load(file)

        return contract_data["abi"]

    @staticmethod
    def event_input_names(abi: list, event_name: str) -> list[str]:
        """Parameter names of an event, in declaration order."""
        for entry in abi:
            if entry.get("type") == "event" and entry.get("name") == event_name:
                return [param["name"] for param in entry.get("inputs", [])]
        raise ValueError(f"Event {event_name} not found in contract ABI")
