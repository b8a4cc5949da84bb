"""Query building, SQL access and statistics pipelines for the analysis store."""