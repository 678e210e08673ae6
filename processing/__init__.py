from processing.assemblies import (
    AssemblyProcessingError,
    AssemblyProcessor,
    AssemblyTransformer,
    DepotSource,
    ProcessingReport,
    TargetSpec,
    find_data_directory,
    managed_directory,
)
