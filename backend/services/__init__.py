from importlib import import_module

__all__ = [
    "redvillage_client",
    "RedVillageClient",
    "nft_index_client",
    "NftIndexClient",
    "fighter_sync",
    "FighterSyncEngine",
    "tournament_sync",
    "TournamentSyncEngine",
]

_LAZY_EXPORTS = {
    "redvillage_client": ("services.redvillage", "redvillage_client"),
    "RedVillageClient": ("services.redvillage", "RedVillageClient"),
    "nft_index_client": ("services.nft_index", "nft_index_client"),
    "NftIndexClient": ("services.nft_index", "NftIndexClient"),
    "fighter_sync": ("services.fighter_sync", "fighter_sync"),
    "FighterSyncEngine": ("services.fighter_sync", "FighterSyncEngine"),
    "tournament_sync": ("services.tournament_sync", "tournament_sync"),
    "TournamentSyncEngine": ("services.tournament_sync", "TournamentSyncEngine"),
}


def __getattr__(name):
    if name not in _LAZY_EXPORTS:
        raise AttributeError(f"module 'services' has no attribute {name!r}")

    module_name, attr_name = _LAZY_EXPORTS[name]
    module = import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value
